"""Domain service for the order aggregate.

``OrderService`` creates orders from frozen line items, applies admin
edits (status, shipping, tax, offer, payment flag) and reacts to the
payment provider's completion callback. It depends only on the ports
defined in ``domain``; persistence and delivery are injected.
"""

import dataclasses
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Sequence

from .auth import Principal, admin_required
from .domain import (
    ORDERS,
    CustomerSnapshot,
    LineItem,
    NotifierPort,
    Offer,
    Order,
    OrderStatus,
    OriginalValues,
    PaymentsPort,
    StorePort,
    generate_order_number,
)
from .errors import AuthorizationError, ConflictError, NotFoundError, PaymentNotEnabledError, ValidationError
from .lifecycle import OrderLifecycle
from .money import ZERO, check_storable, non_negative, round_money
from .notifications import ChangeNotifier
from .pricing import compute_totals, subtotal_of, tax_for, totals_from_subtotal

logger = logging.getLogger("orders")

EDITABLE_FIELDS = ("status", "shipping_fee", "tax", "offer", "payment_enabled")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class EditResult:
    """Outcome of an admin edit.

    Attributes:
        order: The order after the edit (unchanged for no-op edits).
        changes: Changed field -> new value. Empty when nothing changed.
            Includes ``total`` whenever tax, shipping or the offer moved.
    """

    order: Order
    changes: dict

    @property
    def changed(self) -> bool:
        return bool(self.changes)


class OrderService:
    """Domain service responsible for the order lifecycle.

    Every mutating method is a single read, compute and write against the
    store. Admin edits are conditional on the revision read, so two racing
    edits cannot silently drop each other's fields; other writes are
    last-write-wins.
    """

    def __init__(
        self,
        store: StorePort,
        notifier: NotifierPort,
        lifecycle: OrderLifecycle | None = None,
        tax_rate: Decimal = Decimal("0.08"),
        shipping_fee: Decimal = Decimal("15.00"),
        clock: Callable[[], datetime] = _utcnow,
    ):
        """Initialize the service with its collaborators.

        Args:
            store: Document store holding the ``orders`` collection.
            notifier: Outbound notifier, wrapped in a ``ChangeNotifier``.
            lifecycle: Status transition policy; enforcing by default.
            tax_rate: Rate applied to the subtotal when an order is created.
            shipping_fee: Flat shipping applied when an order is created.
            clock: Source of the current time, injectable for tests.
        """
        self.store = store
        self.notifications = ChangeNotifier(notifier)
        self.lifecycle = lifecycle or OrderLifecycle()
        self.tax_rate = tax_rate
        self.shipping_fee = shipping_fee
        self.clock = clock

    # ---- Reads ----
    def _load(self, order_id: str) -> Order:
        doc = self.store.find_by_id(ORDERS, order_id)
        if doc is None:
            raise NotFoundError("ORDER_NOT_FOUND")
        return Order.from_document(doc)

    def get_order(self, principal: Principal, order_id: str) -> Order:
        """Return the order if the caller owns it or is an admin.

        Orders belonging to someone else are reported as missing so their
        existence is not disclosed.
        """
        order = self._load(order_id)
        if not principal.is_admin and order.owner_user_ref != principal.user_id:
            raise NotFoundError("ORDER_NOT_FOUND")
        return order

    def list_orders(self, principal: Principal, scope: str = "self") -> list[Order]:
        """List orders newest first.

        ``scope="all"`` returns every order and is only honoured for
        admins; anyone else always gets their own orders.
        """
        if scope not in ("self", "all"):
            raise ValidationError("INVALID_SCOPE")
        query = {} if scope == "all" and principal.is_admin else {"owner_user_ref": principal.user_id}
        return [Order.from_document(d) for d in self.store.find_many(ORDERS, query, order_by="-created_at")]

    # ---- Creation ----
    def create_order(self, principal: Principal, items: Sequence[LineItem], customer: CustomerSnapshot) -> Order:
        """Price and persist a new order, then send the confirmation.

        Args:
            principal: The purchasing user.
            items: Frozen line items, in display order.
            customer: Contact snapshot stored with the order.

        Returns:
            The persisted Order with its generated ``order_number``.

        Raises:
            ValidationError: ``EMPTY_ORDER`` if there are no items,
                ``AMOUNT_TOO_LARGE`` if the totals exceed what is stored.
        """
        if not items:
            raise ValidationError("EMPTY_ORDER")

        subtotal = subtotal_of(items)
        totals = compute_totals(items, self.shipping_fee, tax_for(subtotal, self.tax_rate), Offer())
        for amount in (totals.subtotal, totals.tax, totals.total):
            check_storable(amount)
        now = self.clock()
        order = Order(
            id=None,
            order_number=generate_order_number(int(now.timestamp() * 1000)),
            owner_user_ref=principal.user_id,
            items=tuple(items),
            customer=customer,
            subtotal=totals.subtotal,
            tax=totals.tax,
            shipping_fee=totals.shipping_fee,
            total=totals.total,
            created_at=now,
            updated_at=now,
        )
        created = Order.from_document(self.store.create(ORDERS, order.to_document()))
        logger.info(
            "order created",
            extra={"order_number": created.order_number, "total": str(round_money(created.total))},
        )
        self.notifications.order_confirmed(created)
        return created

    # ---- Admin edits ----
    def _parse_patch(self, patch: dict) -> dict:
        """Validate raw patch values. Nothing is read or written here."""
        unknown = set(patch) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValidationError("UNKNOWN_FIELD")

        parsed = {}
        if patch.get("status") is not None:
            try:
                parsed["status"] = OrderStatus(patch["status"])
            except ValueError:
                raise ValidationError("INVALID_STATUS")
        if patch.get("shipping_fee") is not None:
            parsed["shipping_fee"] = non_negative(patch["shipping_fee"], "INVALID_SHIPPING_FEE")
        if patch.get("tax") is not None:
            parsed["tax"] = non_negative(patch["tax"], "INVALID_TAX")
        if patch.get("offer") is not None:
            offer = patch["offer"]
            if not isinstance(offer, Offer):
                if not isinstance(offer, dict):
                    raise ValidationError("INVALID_OFFER")
                offer = Offer.from_document(offer)
            parsed["offer"] = offer.validate()
        if patch.get("payment_enabled") is not None:
            if not isinstance(patch["payment_enabled"], bool):
                raise ValidationError("INVALID_PAYMENT_FLAG")
            parsed["payment_enabled"] = patch["payment_enabled"]
        return parsed

    @staticmethod
    def _diff(order: Order, parsed: dict) -> dict:
        return {name: value for name, value in parsed.items() if getattr(order, name) != value}

    @admin_required
    def apply_edit(
        self, principal: Principal, order_id: str, patch: dict, expected_revision: int | None = None
    ) -> EditResult:
        """Apply an admin edit to an order.

        Only fields whose value actually differs are applied; an edit that
        changes nothing returns the order untouched, without a write or a
        notification. The first effective edit captures ``original_values``
        from the pre-edit figures, and that baseline is never overwritten.
        When tax, shipping or the offer move, ``total`` is recomputed from
        the stored subtotal (items are never re-priced).

        Args:
            principal: Caller; must be an admin.
            order_id: Order to edit.
            patch: Any of ``status``, ``shipping_fee``, ``tax``, ``offer``
                (dict or Offer) and ``payment_enabled``.
            expected_revision: Revision the caller last saw. Defaults to
                the revision read here.

        Returns:
            EditResult with the updated order and the map of changes.

        Raises:
            AuthorizationError: Caller is not an admin.
            ValidationError: Malformed value (negative or non-finite
                shipping/tax, percentage offer outside [0, 100], ...).
            NotFoundError: No such order.
            InvalidTransitionError: Status move refused by the lifecycle.
            ConflictError: The order changed since ``expected_revision``.
        """
        parsed = self._parse_patch(patch)
        order = self._load(order_id)
        if expected_revision is not None and expected_revision != order.revision:
            raise ConflictError("REVISION_CONFLICT")

        changes = self._diff(order, parsed)
        if "status" in changes:
            self.lifecycle.check(order.status, changes["status"])
        if not changes:
            return EditResult(order=order, changes={})

        updates = dict(changes)
        if order.original_values is None:
            updates["original_values"] = OriginalValues(
                subtotal=order.subtotal,
                tax=order.tax,
                shipping_fee=order.shipping_fee,
                total=order.total,
                tax_rate=(order.tax / order.subtotal) if order.subtotal else ZERO,
            )

        if {"tax", "shipping_fee", "offer"} & changes.keys():
            totals = totals_from_subtotal(
                order.subtotal,
                updates.get("shipping_fee", order.shipping_fee),
                updates.get("tax", order.tax),
                updates.get("offer", order.offer),
            )
            updates["total"] = check_storable(totals.total)
            changes["total"] = totals.total

        updated = dataclasses.replace(order, **updates, revision=order.revision + 1, updated_at=self.clock())
        full = updated.to_document()
        fields = set(updates) | {"revision", "updated_at"}
        stored = self.store.update_by_id(
            ORDERS, order.id, {name: full[name] for name in fields}, expected_revision=order.revision
        )
        if stored is None:
            raise NotFoundError("ORDER_NOT_FOUND")
        updated = Order.from_document(stored)

        logger.info(
            "order updated",
            extra={"order_number": updated.order_number, "fields": sorted(changes), "revision": updated.revision},
        )
        self.notifications.order_updated(updated, changes)
        return EditResult(order=updated, changes=changes)

    # ---- Payment ----
    def on_payment_completed(self, order_id: str) -> Order:
        """Mark an order paid after the payment provider confirms it.

        Bypasses the admin lifecycle check. The first confirmation stamps
        ``paid_at``; any later one is a no-op, even if an admin has moved
        the order on since, so the provider may redeliver freely. A status
        that is already ``paid`` is not announced again.
        """
        order = self._load(order_id)
        if order.paid_at is not None:
            logger.info("payment callback replayed", extra={"order_number": order.order_number})
            return order

        now = self.clock()
        try:
            stored = self.store.update_by_id(
                ORDERS,
                order.id,
                {"status": OrderStatus.PAID.value, "paid_at": now, "revision": order.revision + 1, "updated_at": now},
                expected_revision=order.revision,
            )
        except ConflictError:
            # a concurrent write; a racing callback may already have recorded the payment
            current = self._load(order_id)
            if current.paid_at is not None:
                return current
            raise
        if stored is None:
            raise NotFoundError("ORDER_NOT_FOUND")
        paid = Order.from_document(stored)
        logger.info("order paid", extra={"order_number": paid.order_number, "previous": order.status.value})
        if order.status is not OrderStatus.PAID:
            self.notifications.order_updated(paid, {"status": OrderStatus.PAID})
        return paid

    def start_payment(self, principal: Principal, order_id: str, payments: PaymentsPort, currency: str = "USD") -> str:
        """Open a payment session for the caller's own order.

        Raises:
            NotFoundError: No such order for this caller.
            AuthorizationError: Caller is not the owner.
            PaymentNotEnabledError: An admin has not enabled payment.
            ConflictError: ``ALREADY_PAID``.
        """
        order = self.get_order(principal, order_id)
        if order.owner_user_ref != principal.user_id:
            raise AuthorizationError("OWNER_REQUIRED")
        if not order.payment_enabled:
            raise PaymentNotEnabledError()
        if order.paid_at is not None or order.status is OrderStatus.PAID:
            raise ConflictError("ALREADY_PAID")
        amount_cents = int(round_money(order.total) * 100)
        if amount_cents <= 0:
            raise ValidationError("NOTHING_TO_PAY")
        return payments.create_session(order.id, order.order_number, amount_cents, currency)
