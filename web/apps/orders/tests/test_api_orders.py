from decimal import Decimal

import pytest

from apps.orders.models import OrderModel

from .factories import CUSTOMER_JSON

ORDERS_URL = "/api/orders/"
BUYER = {"HTTP_X_USER_ID": "user-1"}
STRANGER = {"HTTP_X_USER_ID": "user-2"}
ADMIN = {"HTTP_X_USER_ID": "admin-1", "HTTP_X_USER_ADMIN": "true"}


def order_payload(**overrides):
    payload = {
        "items": [{"product_ref": "p-1", "name": "Helmet", "unit_price": "100.00", "quantity": 2}],
        "customer": CUSTOMER_JSON,
    }
    payload.update(overrides)
    return payload


def create(client, payload=None, **headers):
    return client.post(ORDERS_URL, data=payload or order_payload(), content_type="application/json", **(headers or BUYER))


def edit(client, oid, body, **headers):
    return client.put(f"{ORDERS_URL}{oid}/", data=body, content_type="application/json", **(headers or ADMIN))


@pytest.mark.django_db
def test_create_order_prices_and_persists(client):
    r = create(client)
    assert r.status_code == 201, r.content
    body = r.json()
    assert body["status"] == "processing"
    assert body["order_number"].startswith("ORD-")
    assert body["owner_user_ref"] == "user-1"
    assert body["subtotal"] == "200.00"
    assert body["tax"] == "16.00"
    assert body["shipping_fee"] == "15.00"
    assert body["total"] == "231.00"
    assert body["discount"] == "0.00"
    assert body["payment_enabled"] is False
    assert body["original_values"] is None
    assert body["revision"] == 0
    assert body["next_statuses"] == ["cancelled", "confirmed", "paid"]

    row = OrderModel.objects.get(pk=body["id"])
    assert row.total == Decimal("231")
    assert row.customer["email"] == "ada@example.com"


@pytest.mark.django_db
def test_create_rental_order_flags_rental_items(client):
    items = [
        {"product_ref": "p-1", "name": "Helmet", "unit_price": "100.00"},
        {
            "product_ref": "car-1",
            "name": "Roadster",
            "unit_price": "30000",
            "mode": "rental",
            "rental": {"unit": "daily", "rate": "90", "duration": 2},
        },
    ]
    r = create(client, order_payload(items=items))
    assert r.status_code == 201, r.content
    body = r.json()
    assert body["subtotal"] == "280.00"
    assert body["has_rental_items"] is True
    assert body["has_mixed_items"] is True


@pytest.mark.django_db
@pytest.mark.parametrize(
    "payload",
    [
        order_payload(items=[]),
        order_payload(items=[{"product_ref": "p-1", "name": "Helmet", "unit_price": "10", "quantity": 0}]),
        order_payload(items=[{"product_ref": "p-1", "name": "Helmet", "unit_price": "-1"}]),
        order_payload(items=[{"product_ref": "c", "name": "Car", "unit_price": "1", "mode": "rental"}]),
        order_payload(customer={**CUSTOMER_JSON, "email": "not-an-email"}),
    ],
)
def test_create_order_rejects_invalid_payloads(client, payload):
    r = create(client, payload)
    assert r.status_code == 400
    assert OrderModel.objects.count() == 0


@pytest.mark.django_db
def test_anonymous_caller_is_rejected(client):
    r = client.post(ORDERS_URL, data=order_payload(), content_type="application/json")
    assert r.status_code == 401
    assert r.json() == {"detail": "UNAUTHENTICATED"}
    assert client.get(ORDERS_URL).status_code == 401


@pytest.mark.django_db
def test_list_is_scoped_to_the_caller_unless_admin(client):
    create(client)
    create(client)
    create(client, **STRANGER)

    mine = client.get(ORDERS_URL, **BUYER).json()
    assert mine["count"] == 2
    assert {o["owner_user_ref"] for o in mine["results"]} == {"user-1"}

    # scope=all is ignored for non-admins
    assert client.get(ORDERS_URL, {"scope": "all"}, **BUYER).json()["count"] == 2
    assert client.get(ORDERS_URL, {"scope": "all"}, **ADMIN).json()["count"] == 3
    assert client.get(ORDERS_URL, **ADMIN).json()["count"] == 0


@pytest.mark.django_db
def test_list_paginates(client):
    for _ in range(3):
        create(client)
    r = client.get(ORDERS_URL, {"page_size": 2, "page": 2}, **BUYER)
    body = r.json()
    assert body["count"] == 3
    assert body["page"] == 2
    assert len(body["results"]) == 1


@pytest.mark.django_db
def test_list_rejects_unknown_scope(client):
    r = client.get(ORDERS_URL, {"scope": "everyone"}, **BUYER)
    assert r.status_code == 400
    assert r.json()["detail"] == "INVALID_SCOPE"


@pytest.mark.django_db
def test_detail_hides_other_users_orders(client):
    oid = create(client).json()["id"]
    assert client.get(f"{ORDERS_URL}{oid}/", **BUYER).status_code == 200
    assert client.get(f"{ORDERS_URL}{oid}/", **ADMIN).status_code == 200

    r = client.get(f"{ORDERS_URL}{oid}/", **STRANGER)
    assert r.status_code == 404
    assert r.json()["detail"] == "ORDER_NOT_FOUND"


@pytest.mark.django_db
def test_admin_edit_recomputes_total_and_keeps_baseline(client):
    oid = create(client).json()["id"]

    r = edit(client, oid, {"shipping_fee": "0", "offer": {"type": "percentage", "value": "10"}, "revision": 0})
    assert r.status_code == 200, r.content
    body = r.json()
    # (200 + 16 + 0) * 0.9
    assert body["total"] == "194.40"
    assert body["discount"] == "21.60"
    assert body["original_values"]["total"] == "231.00"
    assert body["revision"] == 1
    assert body["changed_fields"] == ["offer", "shipping_fee", "total"]

    r = edit(client, oid, {"shipping_fee": "30"})
    assert r.json()["original_values"]["total"] == "231.00"


@pytest.mark.django_db
def test_edit_without_changes_is_a_no_op(client):
    oid = create(client).json()["id"]
    r = edit(client, oid, {"shipping_fee": "15.00", "status": "processing"})
    assert r.status_code == 200
    body = r.json()
    assert body["changed_fields"] == []
    assert body["revision"] == 0
    assert body["original_values"] is None


@pytest.mark.django_db
def test_edit_requires_admin(client):
    oid = create(client).json()["id"]
    r = edit(client, oid, {"status": "confirmed"}, **BUYER)
    assert r.status_code == 403
    assert r.json()["detail"] == "ADMIN_REQUIRED"


@pytest.mark.django_db
def test_illegal_transition_is_a_conflict(client, settings):
    oid = create(client).json()["id"]
    r = edit(client, oid, {"status": "delivered"})
    assert r.status_code == 409
    assert r.json() == {"detail": "ILLEGAL_TRANSITION", "current": "processing", "target": "delivered"}

    settings.ORDER_ENFORCE_TRANSITIONS = False
    assert edit(client, oid, {"status": "delivered"}).status_code == 200


@pytest.mark.django_db
def test_stale_revision_is_a_conflict(client):
    oid = create(client).json()["id"]
    assert edit(client, oid, {"status": "confirmed", "revision": 0}).status_code == 200

    r = edit(client, oid, {"status": "sent", "revision": 0})
    assert r.status_code == 409
    assert r.json()["detail"] == "REVISION_CONFLICT"


@pytest.mark.django_db
@pytest.mark.parametrize(
    "body",
    [
        {"offer": {"type": "percentage", "value": "150"}},
        {"shipping_fee": "-5"},
        {"tax": "NaN"},
        {"status": "lost"},
        {"owner_user_ref": "someone-else"},
    ],
)
def test_edit_rejects_malformed_values(client, body):
    oid = create(client).json()["id"]
    r = edit(client, oid, body)
    assert r.status_code == 400
    assert OrderModel.objects.get(pk=oid).revision == 0


@pytest.mark.django_db
def test_edit_unknown_order_is_404(client):
    r = edit(client, "00000000-0000-0000-0000-000000000000", {"status": "confirmed"})
    assert r.status_code == 404


@pytest.mark.django_db
def test_amounts_beyond_storage_are_rejected(client):
    items = [{"product_ref": "p-1", "name": "Helmet", "unit_price": "1e25"}]
    assert create(client, order_payload(items=items)).status_code == 400

    oid = create(client).json()["id"]
    r = edit(client, oid, {"shipping_fee": "1e25"})
    assert r.status_code == 400
    assert OrderModel.objects.get(pk=oid).revision == 0


@pytest.mark.django_db
def test_next_statuses_follow_the_transition_policy(client, settings):
    settings.ORDER_ENFORCE_TRANSITIONS = False
    body = create(client).json()
    assert body["next_statuses"] == ["cancelled", "confirmed", "delivered", "paid", "sent"]
