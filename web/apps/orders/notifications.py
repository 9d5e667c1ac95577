"""Translate order changes into notifier payloads.

The orders core never talks to an email system directly. After an order
is created or edited it builds a payload describing what happened and
hands it to a ``NotifierPort``. Delivery is fire-and-forget: a failing
notifier is logged and otherwise ignored, so the triggering operation
still succeeds.
"""

import logging
from decimal import Decimal

from .domain import NotifierPort, Offer, OfferType, Order, OrderStatus
from .errors import NotificationFailure
from .money import format_money, round_money
from .pricing import discount_for

logger = logging.getLogger("orders.notifications")

ORDER_UPDATE = "orderUpdate"
ORDER_CONFIRMATION = "orderConfirmation"

# Fields rendered for the customer, in display order.
RENDERED_FIELDS = ("status", "shipping_fee", "tax", "offer", "payment_enabled")


def describe_offer(offer: Offer) -> str:
    if offer.description:
        return offer.description
    if offer.type is OfferType.PERCENTAGE:
        return f"{offer.value.normalize():f}% discount applied"
    if offer.type is OfferType.FIXED:
        return f"{format_money(offer.value)} discount applied"
    return "Offer removed"


def describe_change(field: str, value) -> str:
    """Human-readable line for one changed field."""
    if field == "status":
        status = value.value if isinstance(value, OrderStatus) else value
        return f"Order Status: Changed to {status}"
    if field == "shipping_fee":
        return f"Shipping Fee: Updated to {format_money(value)}"
    if field == "tax":
        return f"Tax Amount: Updated to {format_money(value)}"
    if field == "offer":
        return f"Special Offer: {describe_offer(value)}"
    if field == "payment_enabled":
        return "Payment Status: " + ("Payment is now enabled" if value else "Payment is now disabled")
    raise ValueError(f"no rendering for field {field!r}")


def _plain(value):
    if isinstance(value, OrderStatus):
        return value.value
    if isinstance(value, Offer):
        return value.to_document()
    if isinstance(value, Decimal):
        return str(round_money(value))
    return value


def order_summary(order: Order) -> dict:
    """Money snapshot of the order, rounded for presentation."""
    base_total = order.subtotal + order.tax + order.shipping_fee
    return {
        "subtotal": str(round_money(order.subtotal)),
        "tax": str(round_money(order.tax)),
        "shipping_fee": str(round_money(order.shipping_fee)),
        "discount": str(round_money(discount_for(order.offer, base_total))),
        "total": str(round_money(order.total)),
    }


def _envelope(order: Order) -> dict:
    return {
        "to": order.customer.email,
        "customer_name": order.customer.name,
        "order_id": order.id,
        "order_number": order.order_number,
        "summary": order_summary(order),
    }


def build_update_payload(order: Order, changes: dict) -> dict:
    """Payload for an ``orderUpdate`` notification.

    Args:
        order: The order after the edit was applied.
        changes: Map of changed field to its new value, as returned by
            ``OrderService.apply_edit``.

    Returns:
        dict: Envelope with one rendered entry per changed field plus the
        order summary at the time of the change.
    """
    payload = _envelope(order)
    payload["changes"] = [
        {"field": name, "value": _plain(changes[name]), "summary": describe_change(name, changes[name])}
        for name in RENDERED_FIELDS
        if name in changes
    ]
    return payload


def build_confirmation_payload(order: Order) -> dict:
    payload = _envelope(order)
    payload["status"] = order.status.value
    payload["items"] = [
        {
            "name": item.name,
            "quantity": item.quantity,
            "mode": item.mode.value,
            "line_total": str(round_money(item.line_total)),
        }
        for item in order.items
    ]
    payload["has_rental_items"] = order.has_rental_items
    return payload


class ChangeNotifier:
    """Adapter between the orders core and the external notifier."""

    def __init__(self, notifier: NotifierPort):
        self.notifier = notifier

    def order_updated(self, order: Order, changes: dict) -> bool:
        if not changes:
            return False
        return self._dispatch(ORDER_UPDATE, order, build_update_payload(order, changes))

    def order_confirmed(self, order: Order) -> bool:
        return self._dispatch(ORDER_CONFIRMATION, order, build_confirmation_payload(order))

    def _dispatch(self, kind: str, order: Order, payload: dict) -> bool:
        """Send ``payload``; return False instead of raising on failure."""
        try:
            self.notifier.notify(kind, payload)
        except Exception as exc:
            failure = NotificationFailure()
            logger.warning(
                "notification failed",
                extra={"kind": kind, "order_number": order.order_number, "code": failure.code, "error": repr(exc)},
            )
            return False
        logger.info("notification sent", extra={"kind": kind, "order_number": order.order_number})
        return True
