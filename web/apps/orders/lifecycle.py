"""Order status state machine.

``processing -> {paid, confirmed, cancelled}``, ``paid -> {confirmed,
cancelled}``, ``confirmed -> {sent, cancelled}``, ``sent -> {delivered,
cancelled}``; ``delivered`` and ``cancelled`` are terminal.

Admins historically could set any status from any status. Enforcement is
therefore a switch (``ORDER_ENFORCE_TRANSITIONS``): when off, every move
is accepted. The payment callback never goes through this check.
"""

from .domain import OrderStatus
from .errors import InvalidTransitionError

S = OrderStatus

TRANSITIONS: dict[OrderStatus, frozenset] = {
    S.PROCESSING: frozenset({S.PAID, S.CONFIRMED, S.CANCELLED}),
    S.PAID: frozenset({S.CONFIRMED, S.CANCELLED}),
    S.CONFIRMED: frozenset({S.SENT, S.CANCELLED}),
    S.SENT: frozenset({S.DELIVERED, S.CANCELLED}),
    S.DELIVERED: frozenset(),
    S.CANCELLED: frozenset(),
}


def allowed_targets(status: OrderStatus) -> frozenset:
    return TRANSITIONS[status]


class OrderLifecycle:
    """Validates status changes requested through admin edits."""

    def __init__(self, enforce: bool = True):
        self.enforce = enforce

    def can_transition(self, current: OrderStatus, target: OrderStatus) -> bool:
        if current == target or not self.enforce:
            return True
        return target in TRANSITIONS[current]

    def next_statuses(self, current: OrderStatus) -> frozenset:
        """Statuses an admin edit may move ``current`` to under this policy."""
        if not self.enforce:
            return frozenset(s for s in OrderStatus if s is not current)
        return allowed_targets(current)

    def check(self, current: OrderStatus, target: OrderStatus) -> None:
        """Raise ``InvalidTransitionError`` if ``current -> target`` is refused."""
        if not self.can_transition(current, target):
            raise InvalidTransitionError(current.value, target.value)
