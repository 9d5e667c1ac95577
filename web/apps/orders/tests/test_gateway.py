import json

import pytest

from apps.orders.http_adapters import _notifications_cb


@pytest.mark.django_db
def test_health_reports_db_and_circuits(client):
    r = client.get("/health/")
    assert r.status_code == 200
    body = r.json()
    assert body["ok"] is True
    assert body["components"]["db"] == {"ok": True}
    assert body["components"]["notifications"] == {"ok": True, "circuit": "CLOSED"}
    assert body["components"]["payments"]["circuit"] == "CLOSED"


@pytest.mark.django_db
def test_health_stays_up_with_an_open_circuit(client):
    for _ in range(_notifications_cb.fail_threshold):
        _notifications_cb.on_failure()
    r = client.get("/health/")
    assert r.status_code == 200
    assert r.json()["components"]["notifications"] == {"ok": False, "circuit": "OPEN"}


@pytest.mark.django_db
def test_request_id_is_echoed_or_generated(client):
    r = client.get("/health/", HTTP_X_REQUEST_ID="rid-123")
    assert r["X-Request-ID"] == "rid-123"

    r = client.get("/health/")
    assert len(r["X-Request-ID"]) == 36


def test_oversized_api_payload_is_rejected(client, monkeypatch):
    monkeypatch.setattr("gateway.middleware.MAX_API_BYTES", 10)
    r = client.post(
        "/api/orders/",
        data=json.dumps({"items": [], "padding": "x" * 64}),
        content_type="application/json",
        HTTP_X_USER_ID="user-1",
    )
    assert r.status_code == 413
    assert r.json() == {"detail": "PAYLOAD_TOO_LARGE"}


@pytest.mark.django_db
def test_admin_flag_requires_a_user(client):
    # without X-User-Id the admin header grants nothing
    r = client.get("/api/orders/", {"scope": "all"}, HTTP_X_USER_ADMIN="true")
    assert r.status_code == 401
