"""Caller identity for the orders core.

Credentials are verified upstream; by the time a request reaches the
orders app the gateway middleware has attached the caller's user id and
admin flag. This module turns that into a ``Principal`` and provides the
single authorization gate used by admin-only operations.
"""

from dataclasses import dataclass
from functools import wraps

from .errors import AuthorizationError


@dataclass(frozen=True)
class Principal:
    user_id: str
    is_admin: bool = False


def principal_from_request(request) -> Principal | None:
    """Build a Principal from attributes set by ``TrustedPrincipalMiddleware``."""
    user_ref = getattr(request, "user_ref", None)
    if not user_ref:
        return None
    return Principal(user_id=user_ref, is_admin=bool(getattr(request, "is_admin", False)))


def require_principal(request) -> Principal:
    principal = principal_from_request(request)
    if principal is None:
        raise AuthorizationError("UNAUTHENTICATED")
    return principal


def admin_required(func):
    """Reject non-admin callers before the wrapped service method runs.

    The wrapped method must take the ``Principal`` as its first argument
    after ``self``. Nothing is read or written when the check fails.
    """

    @wraps(func)
    def wrapper(self, principal, *args, **kwargs):
        if principal is None or not principal.is_admin:
            raise AuthorizationError("ADMIN_REQUIRED")
        return func(self, principal, *args, **kwargs)

    return wrapper
