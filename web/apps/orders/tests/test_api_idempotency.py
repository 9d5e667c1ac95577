import pytest

from apps.orders.models import IdempotencyKey, OrderModel

from .factories import CUSTOMER_JSON

CREATE_URL = "/api/orders/"
CHECKOUT_URL = "/api/checkout/"
BUYER = {"HTTP_X_USER_ID": "user-1"}


def payload(quantity=2):
    return {
        "items": [{"product_ref": "p-1", "name": "Helmet", "unit_price": "100.00", "quantity": quantity}],
        "customer": CUSTOMER_JSON,
    }


def post(client, url, body, key):
    return client.post(url, data=body, content_type="application/json", HTTP_IDEMPOTENCY_KEY=key, **BUYER)


@pytest.mark.django_db
def test_idempotent_same_payload_returns_same_order_and_status_on_retry(client):
    key = "idem-same-1"

    # 1º intento
    r1 = post(client, CREATE_URL, payload(), key)
    assert r1.status_code == 201
    body1 = r1.json()

    # 2º intento (replay)
    r2 = post(client, CREATE_URL, payload(), key)
    assert r2.status_code == r1.status_code
    assert r2.json() == body1
    assert r2.headers.get("Idempotent-Replay") == "true"

    assert OrderModel.objects.count() == 1
    assert IdempotencyKey.objects.get(key=key).order_ref == body1["id"]


@pytest.mark.django_db
def test_idempotent_conflict_on_different_payload_with_same_key(client):
    key = "idem-conflict-1"

    r1 = post(client, CREATE_URL, payload(quantity=2), key)
    assert r1.status_code == 201

    r2 = post(client, CREATE_URL, payload(quantity=3), key)
    assert r2.status_code == 409
    assert r2.json()["detail"] == "IDEMPOTENCY_CONFLICT"
    assert OrderModel.objects.count() == 1


@pytest.mark.django_db
def test_key_is_scoped_to_the_endpoint(client):
    key = "idem-scope-1"
    assert post(client, CREATE_URL, payload(), key).status_code == 201

    r = post(client, CHECKOUT_URL, payload(), key)
    assert r.status_code == 409
    assert r.json()["detail"] == "IDEMPOTENCY_CONFLICT"


@pytest.mark.django_db
def test_idempotent_replay_preserves_error_status(client):
    key = "idem-empty-cart"
    body = {"customer": CUSTOMER_JSON}

    r1 = post(client, CHECKOUT_URL, body, key)
    assert r1.status_code == 400
    assert r1.json()["detail"] == "EMPTY_CART"

    r2 = post(client, CHECKOUT_URL, body, key)
    assert r2.status_code == 400
    assert r2.json() == r1.json()
    assert r2.headers.get("Idempotent-Replay") == "true"


@pytest.mark.django_db
def test_unfinished_record_reports_in_progress(client):
    key = "idem-in-flight"
    from apps.orders.idempotency import _hash

    IdempotencyKey.objects.create(
        user_ref="user-1", key=key, request_hash=_hash("orders", payload()), response_status=0, response_body={}
    )

    r = post(client, CREATE_URL, payload(), key)
    assert r.status_code == 409
    assert r.json()["detail"] == "IDEMPOTENCY_IN_PROGRESS"
    assert OrderModel.objects.count() == 0


@pytest.mark.django_db
def test_without_key_every_request_creates_an_order(client):
    for _ in range(2):
        r = client.post(CREATE_URL, data=payload(), content_type="application/json", **BUYER)
        assert r.status_code == 201
    assert OrderModel.objects.count() == 2
    assert IdempotencyKey.objects.count() == 0


@pytest.mark.django_db
def test_same_key_from_another_user_is_independent(client):
    key = "idem-shared"
    r1 = post(client, CREATE_URL, payload(), key)
    assert r1.status_code == 201

    r2 = client.post(
        CREATE_URL, data=payload(), content_type="application/json", HTTP_IDEMPOTENCY_KEY=key, HTTP_X_USER_ID="user-2"
    )
    assert r2.status_code == 201
    assert r2.headers.get("Idempotent-Replay") is None
    assert r2.json()["owner_user_ref"] == "user-2"
    assert r2.json()["id"] != r1.json()["id"]
    assert OrderModel.objects.count() == 2
    assert IdempotencyKey.objects.filter(key=key).count() == 2
