"""Unit tests for ``OrderService``.

They run the service against the in-memory store and the notifier stub,
covering creation, admin edits (no-ops, baseline capture, validation,
lifecycle, revisions) and the payment paths.
"""

from decimal import Decimal

import pytest

from apps.orders.adapters import PaymentsStub
from apps.orders.auth import Principal
from apps.orders.domain import ORDERS, Offer, OfferType, OrderStatus
from apps.orders.errors import (
    AuthorizationError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    PaymentNotEnabledError,
    ValidationError,
)
from apps.orders.lifecycle import OrderLifecycle
from apps.orders.notifications import ORDER_CONFIRMATION, ORDER_UPDATE
from apps.orders.service import OrderService

from .factories import FIXED_NOW, purchase, rental


# ---- creation ----

def test_create_order_prices_and_confirms(make_order, notifier):
    order = make_order([purchase("100.00"), rental("20.00", duration=3)])
    assert order.id
    assert order.order_number.startswith(f"ORD-{int(FIXED_NOW.timestamp() * 1000)}-")
    assert order.status is OrderStatus.PROCESSING
    assert order.payment_enabled is False
    assert order.subtotal == Decimal("160.00")
    assert order.tax == Decimal("12.80")
    assert order.shipping_fee == Decimal("15.00")
    assert order.total == Decimal("187.80")
    assert order.has_mixed_items
    assert order.original_values is None
    assert [kind for kind, _ in notifier.sent] == [ORDER_CONFIRMATION]


def test_create_order_empty(service, buyer, customer):
    with pytest.raises(ValidationError) as e:
        service.create_order(buyer, [], customer)
    assert str(e.value) == "EMPTY_ORDER"


# ---- admin edits ----

def test_apply_edit_requires_admin(service, make_order, buyer, store):
    order = make_order()
    with pytest.raises(AuthorizationError) as e:
        service.apply_edit(buyer, order.id, {"shipping_fee": "0"})
    assert str(e.value) == "ADMIN_REQUIRED"
    assert store.find_by_id(ORDERS, order.id)["revision"] == 0


def test_noop_edit_writes_and_notifies_nothing(service, make_order, admin, notifier):
    order = make_order()
    result = service.apply_edit(admin, order.id, {"status": "processing", "shipping_fee": "15", "tax": 8})
    assert not result.changed
    assert result.order.revision == 0
    assert result.order.original_values is None
    assert len(notifier.sent) == 1  # confirmation only


def test_shipping_edit_recomputes_total_and_captures_baseline(service, make_order, admin, notifier):
    order = make_order()
    result = service.apply_edit(admin, order.id, {"shipping_fee": "25.00"})

    assert set(result.changes) == {"shipping_fee", "total"}
    assert result.order.shipping_fee == Decimal("25.00")
    assert result.order.total == Decimal("133.00")
    assert result.order.revision == 1

    ov = result.order.original_values
    assert (ov.subtotal, ov.tax, ov.shipping_fee, ov.total) == (
        Decimal("100.00"), Decimal("8.00"), Decimal("15.00"), Decimal("123.00"),
    )
    assert ov.tax_rate == Decimal("0.08")

    kind, payload = notifier.sent[-1]
    assert kind == ORDER_UPDATE
    assert [c["field"] for c in payload["changes"]] == ["shipping_fee"]
    assert payload["summary"]["total"] == "133.00"


def test_original_values_are_write_once(service, make_order, admin):
    order = make_order()
    service.apply_edit(admin, order.id, {"shipping_fee": "0"})
    result = service.apply_edit(admin, order.id, {"tax": "20.00"})

    ov = result.order.original_values
    assert ov.shipping_fee == Decimal("15.00")
    assert ov.tax == Decimal("8.00")
    assert ov.tax_rate == Decimal("0.08")
    assert result.order.total == Decimal("120.00")


def test_payment_flag_edit_does_not_touch_total(service, make_order, admin):
    order = make_order()
    result = service.apply_edit(admin, order.id, {"payment_enabled": True})
    assert result.changes == {"payment_enabled": True}
    assert result.order.total == order.total
    assert result.order.original_values is not None


def test_offer_edits(service, make_order, admin):
    order = make_order()
    pct = service.apply_edit(admin, order.id, {"offer": {"type": "percentage", "value": "10"}})
    assert pct.order.total == Decimal("110.70")

    fixed = service.apply_edit(admin, order.id, {"offer": Offer(OfferType.FIXED, Decimal("500"))})
    assert fixed.order.total == Decimal("0")

    removed = service.apply_edit(admin, order.id, {"offer": {"type": "none"}})
    assert removed.order.total == Decimal("123.00")


def test_percentage_offer_over_100_is_rejected(service, make_order, admin, store):
    order = make_order()
    with pytest.raises(ValidationError) as e:
        service.apply_edit(admin, order.id, {"offer": {"type": "percentage", "value": 150}})
    assert str(e.value) == "INVALID_OFFER_VALUE"
    assert store.find_by_id(ORDERS, order.id)["revision"] == 0


@pytest.mark.parametrize(
    "patch,code",
    [
        ({"shipping_fee": "-1"}, "INVALID_SHIPPING_FEE"),
        ({"tax": "NaN"}, "INVALID_TAX"),
        ({"tax": float("inf")}, "INVALID_TAX"),
        ({"status": "lost"}, "INVALID_STATUS"),
        ({"payment_enabled": "yes"}, "INVALID_PAYMENT_FLAG"),
        ({"offer": "half off"}, "INVALID_OFFER"),
        ({"subtotal": "1"}, "UNKNOWN_FIELD"),
    ],
)
def test_invalid_patches_are_rejected(service, make_order, admin, patch, code):
    order = make_order()
    with pytest.raises(ValidationError) as e:
        service.apply_edit(admin, order.id, patch)
    assert str(e.value) == code


def test_edit_missing_order(service, admin):
    with pytest.raises(NotFoundError) as e:
        service.apply_edit(admin, "nope", {"tax": "1"})
    assert str(e.value) == "ORDER_NOT_FOUND"


def test_illegal_status_move_is_refused_when_enforced(service, make_order, admin):
    order = make_order()
    with pytest.raises(InvalidTransitionError):
        service.apply_edit(admin, order.id, {"status": "delivered"})


def test_permissive_lifecycle_allows_any_move(store, notifier, buyer, customer, admin):
    service = OrderService(store, notifier, lifecycle=OrderLifecycle(enforce=False))
    order = service.create_order(buyer, [purchase()], customer)
    result = service.apply_edit(admin, order.id, {"status": "delivered"})
    assert result.order.status is OrderStatus.DELIVERED
    result = service.apply_edit(admin, order.id, {"status": "processing"})
    assert result.order.status is OrderStatus.PROCESSING


def test_stale_revision_is_a_conflict(service, make_order, admin):
    order = make_order()
    service.apply_edit(admin, order.id, {"shipping_fee": "10"})
    with pytest.raises(ConflictError) as e:
        service.apply_edit(admin, order.id, {"tax": "1"}, expected_revision=0)
    assert str(e.value) == "REVISION_CONFLICT"


def test_concurrent_write_between_read_and_update_is_a_conflict(service, make_order, admin, store, monkeypatch):
    order = make_order()
    real_load = service._load

    def load_then_race(order_id):
        loaded = real_load(order_id)
        store.update_by_id(ORDERS, order_id, {"revision": loaded.revision + 1})
        return loaded

    monkeypatch.setattr(service, "_load", load_then_race)
    with pytest.raises(ConflictError):
        service.apply_edit(admin, order.id, {"shipping_fee": "1"})


def test_notification_failure_does_not_fail_the_edit(store, buyer, customer, admin):
    class BrokenNotifier:
        def notify(self, kind, payload):
            raise ConnectionError("smtp down")

    service = OrderService(store, BrokenNotifier())
    order = service.create_order(buyer, [purchase()], customer)
    result = service.apply_edit(admin, order.id, {"tax": "0"})
    assert result.changed
    assert result.order.total == Decimal("115.00")


# ---- reads ----

def test_get_order_owner_or_admin_only(service, make_order, admin):
    order = make_order()
    assert service.get_order(admin, order.id).id == order.id
    with pytest.raises(NotFoundError):
        service.get_order(Principal(user_id="someone-else"), order.id)


def test_list_orders_scopes(service, make_order, buyer, admin):
    make_order()
    make_order(principal=Principal(user_id="user-2"))

    assert [o.owner_user_ref for o in service.list_orders(buyer)] == ["user-1"]
    assert len(service.list_orders(admin, scope="all")) == 2
    # scope=all is ignored for non-admins
    assert len(service.list_orders(buyer, scope="all")) == 1
    with pytest.raises(ValidationError):
        service.list_orders(buyer, scope="everyone")


# ---- payment ----

def test_payment_callback_marks_paid_once(service, make_order, notifier, store):
    order = make_order()
    paid = service.on_payment_completed(order.id)
    assert paid.status is OrderStatus.PAID
    assert notifier.sent[-1][0] == ORDER_UPDATE
    sent_before = len(notifier.sent)

    again = service.on_payment_completed(order.id)
    assert again.status is OrderStatus.PAID
    assert again.revision == paid.revision
    assert len(notifier.sent) == sent_before


def test_payment_callback_bypasses_lifecycle(service, make_order, admin):
    order = make_order()
    service.apply_edit(admin, order.id, {"status": "cancelled"})
    assert service.on_payment_completed(order.id).status is OrderStatus.PAID


def test_start_payment_gates(service, make_order, buyer, admin):
    order = make_order()
    payments = PaymentsStub()

    with pytest.raises(PaymentNotEnabledError):
        service.start_payment(buyer, order.id, payments)

    service.apply_edit(admin, order.id, {"payment_enabled": True})
    with pytest.raises(AuthorizationError) as e:
        service.start_payment(admin, order.id, payments)
    assert str(e.value) == "OWNER_REQUIRED"
    with pytest.raises(NotFoundError):
        service.start_payment(Principal(user_id="stranger"), order.id, payments)

    assert service.start_payment(buyer, order.id, payments).startswith("cs_")

    service.on_payment_completed(order.id)
    with pytest.raises(ConflictError) as e:
        service.start_payment(buyer, order.id, payments)
    assert str(e.value) == "ALREADY_PAID"


def test_start_payment_sends_rounded_cents(service, make_order, buyer, admin):
    order = make_order([purchase("10.005")])
    service.apply_edit(admin, order.id, {"payment_enabled": True})

    class RecordingPayments:
        def create_session(self, order_id, order_number, amount_cents, currency):
            self.args = (order_id, order_number, amount_cents, currency)
            return "cs_test"

    payments = RecordingPayments()
    service.start_payment(buyer, order.id, payments)
    # 10.005 + 0.8004 tax + 15 shipping = 25.8054
    assert payments.args == (order.id, order.order_number, 2581, "USD")


def test_start_payment_with_nothing_to_pay(service, make_order, buyer, admin):
    order = make_order()
    service.apply_edit(admin, order.id, {"payment_enabled": True, "offer": {"type": "fixed", "value": "1000"}})
    with pytest.raises(ValidationError) as e:
        service.start_payment(buyer, order.id, PaymentsStub())
    assert str(e.value) == "NOTHING_TO_PAY"


def test_payment_callback_after_admin_moved_order_on_is_a_no_op(service, make_order, admin, notifier):
    order = make_order()
    paid = service.on_payment_completed(order.id)
    assert paid.paid_at == FIXED_NOW
    confirmed = service.apply_edit(admin, order.id, {"status": "confirmed"}).order
    sent_before = len(notifier.sent)

    again = service.on_payment_completed(order.id)
    assert again.status is OrderStatus.CONFIRMED
    assert again.revision == confirmed.revision
    assert len(notifier.sent) == sent_before


def test_payment_callback_on_manually_paid_order_is_not_announced_twice(service, make_order, admin, notifier):
    order = make_order()
    service.apply_edit(admin, order.id, {"status": "paid"})
    sent_before = len(notifier.sent)

    recorded = service.on_payment_completed(order.id)
    assert recorded.status is OrderStatus.PAID
    assert recorded.paid_at == FIXED_NOW
    assert len(notifier.sent) == sent_before


def test_creation_scenario_with_purchase_and_rental(service, buyer, customer):
    order = service.create_order(buyer, [purchase("50.00"), rental("20.00", duration=2)], customer)
    assert order.subtotal == Decimal("90.00")
    assert order.tax == Decimal("7.20")
    assert order.shipping_fee == Decimal("15.00")
    assert order.total == Decimal("112.20")
    assert order.has_mixed_items


def test_creation_rejects_totals_too_large_to_store(service, store, buyer, customer):
    with pytest.raises(ValidationError) as e:
        service.create_order(buyer, [purchase("999999999999", qty=2)], customer)
    assert e.value.code == "AMOUNT_TOO_LARGE"
    assert store.find_many(ORDERS, {}) == []


def test_edit_rejects_amounts_too_large_to_store(service, make_order, admin):
    order = make_order()
    with pytest.raises(ValidationError) as e:
        service.apply_edit(admin, order.id, {"shipping_fee": "1e25"})
    assert e.value.code == "INVALID_SHIPPING_FEE"

    # each figure fits, their sum does not
    with pytest.raises(ValidationError) as e:
        service.apply_edit(admin, order.id, {"shipping_fee": "999999999999", "tax": "999999999999"})
    assert e.value.code == "AMOUNT_TOO_LARGE"
    assert service._load(order.id).revision == order.revision
