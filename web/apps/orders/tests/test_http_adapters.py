"""Unit tests for HTTP adapters to the notifications and payments services.

These tests verify that the HTTP clients handle success, rejection, and
network error conditions correctly by monkeypatching ``httpx.Client.post``
and asserting the adapter behavior.
"""
import httpx
import pytest

from apps.orders.http_adapters import HttpNotifierClient, HttpPaymentsClient
from gateway.middleware import REQUEST_ID_CTX


class DummyResp:
    """Minimal httpx-like response stub for adapter tests.

    Args:
        status_code (int): HTTP status code to simulate.
        json_data (dict | None): JSON body to return from ``json()``.
    """
    def __init__(self, status_code=200, json_data=None):
        self.status_code = status_code
        self._json = json_data or {}
    def raise_for_status(self):
        if self.status_code >= 400:
            raise httpx.HTTPStatusError("err", request=None, response=None)
    def json(self): return self._json


def test_notifier_posts_kind_recipient_and_payload(monkeypatch):
    """Notifier adapter sends one POST to /notify and accepts 202."""
    seen = {}
    def fake_post(self, url, json=None, headers=None, **kw):
        seen.update(url=url, json=json, headers=headers)
        return DummyResp(202, {"queued": True})
    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)

    HttpNotifierClient(base_url="http://notifications:9001").notify("orderUpdate", {"to": "a@example.com", "order_number": "ORD-1-001"})
    assert seen["url"] == "http://notifications:9001/notify"
    assert seen["json"]["kind"] == "orderUpdate"
    assert seen["json"]["to"] == "a@example.com"
    assert seen["json"]["payload"]["order_number"] == "ORD-1-001"


def test_notifier_propagates_rejection(monkeypatch):
    """A 4xx from the notifications service is raised, not retried."""
    calls = {"n": 0}
    def fake_post(self, url, json=None, headers=None, **kw):
        calls["n"] += 1
        return DummyResp(422)
    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)
    with pytest.raises(httpx.HTTPStatusError):
        HttpNotifierClient().notify("orderUpdate", {"to": "a@example.com"})
    assert calls["n"] == 1


def test_payments_create_session_uses_order_number_as_idempotency_key(monkeypatch):
    """Payments adapter returns the session id and sends Idempotency-Key."""
    seen = {}
    def fake_post(self, url, json=None, headers=None, **kw):
        seen.update(url=url, json=json, headers=headers)
        return DummyResp(201, {"session_id": "cs_123", "status": "open"})
    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)

    sid = HttpPaymentsClient(base_url="http://payments:9002").create_session("oid", "ORD-1-001", 12345, "USD")
    assert sid == "cs_123"
    assert seen["url"] == "http://payments:9002/sessions"
    assert seen["headers"]["Idempotency-Key"] == "ORD-1-001"
    assert seen["json"] == {"order_id": "oid", "order_number": "ORD-1-001", "amount_cents": 12345, "currency": "USD"}


def test_request_id_is_propagated(monkeypatch):
    seen = {}
    def fake_post(self, url, json=None, headers=None, **kw):
        seen.update(headers=headers)
        return DummyResp(201, {"session_id": "cs_1"})
    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)

    token = REQUEST_ID_CTX.set("rid-42")
    try:
        HttpPaymentsClient().create_session("oid", "ORD-1-002", 100, "USD")
    finally:
        REQUEST_ID_CTX.reset(token)
    assert seen["headers"]["X-Request-ID"] == "rid-42"
    assert seen["headers"]["X-Retry-Count"] == "0"


def test_payments_network_error(monkeypatch, settings):
    """Payments adapter propagates network errors from httpx after retries."""
    settings.HTTP_RETRY_MAX = 0
    def fake_post(self, url, json=None, headers=None, **kw):
        raise httpx.ConnectError("boom")
    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)
    with pytest.raises(httpx.ConnectError):
        HttpPaymentsClient().create_session("oid", "ORD-1-003", 100, "USD")
