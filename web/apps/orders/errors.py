"""Exceptions raised by the orders core.

Every error carries a short upper-case ``code`` which is also its string
form, so views can return ``{"detail": str(exc)}`` directly.
"""


class OrderError(Exception):
    """Base class for all orders-core errors."""

    default_code = "ORDER_ERROR"

    def __init__(self, code: str | None = None):
        self.code = code or self.default_code
        super().__init__(self.code)


class ValidationError(OrderError):
    """Malformed input. Raised before any write is attempted."""

    default_code = "VALIDATION_ERROR"


class NotFoundError(OrderError):
    """Referenced order, cart entry or product does not exist."""

    default_code = "NOT_FOUND"


class AuthorizationError(OrderError):
    """The caller is not allowed to perform the operation."""

    default_code = "ADMIN_REQUIRED"


class InvalidTransitionError(OrderError):
    """Requested status change is not an edge of the lifecycle graph."""

    default_code = "ILLEGAL_TRANSITION"

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__()


class ConflictError(OrderError):
    """The stored document changed since it was read."""

    default_code = "REVISION_CONFLICT"


class PaymentNotEnabledError(OrderError):
    default_code = "PAYMENT_NOT_ENABLED"


class NotificationFailure(OrderError):
    """Best-effort notifier failure. Logged, never propagated to callers."""

    default_code = "NOTIFICATION_FAILED"


class StoreUnavailable(OrderError):
    """Underlying persistence is unreachable."""

    default_code = "STORE_UNAVAILABLE"
