"""HTTP adapter clients with retries, circuit breakers, and context headers.

This module implements concrete HTTP clients for the notifier and payments
ports using ``httpx``. It adds:

- Request correlation: propagates ``X-Request-ID`` from a ContextVar set by
    the gateway middleware.
- Circuit breaker per downstream service (notifications, payments) to avoid
    hammering unhealthy dependencies, with a single HALF_OPEN trial call after a timeout.
- Simple retry policy with exponential backoff for transport errors and 5xx.
- Payments idempotency: session creation sends the order number as
    ``Idempotency-Key`` so a retried request reuses the same session.
"""

import logging
import threading
import time
from typing import Iterable, Optional

import httpx
from django.conf import settings
from django.utils.module_loading import import_string

from .domain import NotifierPort, PaymentsPort

REQUEST_ID_CTX = import_string("gateway.middleware.REQUEST_ID_CTX")

logger = logging.getLogger("orders.http")


# ---------------- Circuit Breaker ---------------- #

CLOSED, OPEN, HALF_OPEN = "CLOSED", "OPEN", "HALF_OPEN"


class CircuitBreaker:
    """Per-collaborator breaker guarding outbound calls.

    Counts failed calls (transport errors and exhausted 5xx retries). At
    ``fail_threshold`` it opens and rejects calls outright; after
    ``reset_timeout`` seconds it lets a single trial call through, closing on
    success and reopening on failure. Rejections raise ``RuntimeError`` so
    callers treat them like any other collaborator outage.
    """

    def __init__(self, name: str, fail_threshold: int, reset_timeout: float):
        self.name = name
        self.fail_threshold = fail_threshold
        self.reset_timeout = reset_timeout
        self._lock = threading.RLock()
        self._failures = 0
        self._state = CLOSED
        self._opened_at = 0.0
        self._trial_in_flight = False

    def _log(self, message: str, level=logging.INFO):
        logger.log(level, message, extra={"service": self.name, "state": self._state, "failures": self._failures})

    @property
    def state(self) -> str:
        """Current state; an expired OPEN breaker reports HALF_OPEN."""
        with self._lock:
            if self._state == OPEN and time.monotonic() - self._opened_at >= self.reset_timeout:
                self._state = HALF_OPEN
                self._trial_in_flight = False
                self._log("circuit half-open")
            return self._state

    def before_call(self) -> str:
        """Admit a call, returning the state it runs under.

        Raises:
            RuntimeError: ``CIRCUIT_OPEN``, or ``CIRCUIT_HALF_OPEN_BUSY``
                while another trial call is in flight.
        """
        with self._lock:
            st = self.state
            if st == OPEN:
                raise RuntimeError("CIRCUIT_OPEN")
            if st == HALF_OPEN:
                if self._trial_in_flight:
                    raise RuntimeError("CIRCUIT_HALF_OPEN_BUSY")
                self._trial_in_flight = True
            return st

    def on_success(self):
        with self._lock:
            recovered = self._state != CLOSED
            self._failures = 0
            self._state = CLOSED
            self._trial_in_flight = False
            if recovered:
                self._log("circuit closed")

    def on_failure(self):
        with self._lock:
            self._failures += 1
            reopen = self._state == HALF_OPEN
            if self._state != OPEN and (reopen or self._failures >= self.fail_threshold):
                self._state = OPEN
                self._opened_at = time.monotonic()
                self._trial_in_flight = False
                self._log("circuit opened", logging.WARNING)

    def on_finish(self):
        """Release the trial slot once a call has finished, whatever its outcome."""
        with self._lock:
            if self._state == HALF_OPEN:
                self._trial_in_flight = False


# Per-service instances
_notifications_cb = CircuitBreaker(
    "notifications",
    getattr(settings, "HTTP_CIRCUIT_FAIL_THRESHOLD", 5),
    getattr(settings, "HTTP_CIRCUIT_RESET_TIMEOUT", 30.0),
)
_payments_cb = CircuitBreaker(
    "payments",
    getattr(settings, "HTTP_CIRCUIT_FAIL_THRESHOLD", 5),
    getattr(settings, "HTTP_CIRCUIT_RESET_TIMEOUT", 30.0),
)


def circuit_states() -> dict:
    return {cb.name: cb.state for cb in (_notifications_cb, _payments_cb)}


# ---------------- Helpers ---------------- #

def _request_headers(extra: Optional[dict] = None) -> dict:
    """Build base headers including X-Request-ID and any extras.

    Reads the request id from the ContextVar populated by middleware and
    adds it as ``X-Request-ID`` when present. Then applies any extra headers
    provided by the caller.
    """
    headers: dict[str, str] = {}
    rid = REQUEST_ID_CTX.get()
    if rid and rid != "-":
        headers["X-Request-ID"] = rid
    if extra:
        headers.update(extra)
    return headers


def _retry_policy():
    """Return retry configuration as (max_retries, backoff_base_seconds)."""
    return (
        getattr(settings, "HTTP_RETRY_MAX", 3),
        getattr(settings, "HTTP_RETRY_BACKOFF_BASE", 0.15),
    )


def _should_retry(resp: Optional[httpx.Response], exc: Optional[Exception]) -> bool:
    """Retry only on transport exceptions or HTTP 5xx."""
    if exc is not None:
        return True
    if resp is not None and 500 <= resp.status_code < 600:
        return True
    return False


def _post(
    breaker: CircuitBreaker,
    url: str,
    payload: dict,
    timeout: float,
    ok_statuses: Iterable[int],
    extra_headers: Optional[dict] = None,
):
    """POST ``payload`` under ``breaker`` with retries and backoff.

    Returns the first response whose status is in ``ok_statuses``. Other
    4xx responses are raised immediately via ``raise_for_status`` and do
    not count against the circuit.

    Raises:
        RuntimeError: Circuit open or half-open trial call busy.
        httpx.RequestError: Transport errors after retries.
        httpx.HTTPStatusError: Non-retriable or exhausted non-2xx responses.
    """
    ok_statuses = set(ok_statuses)
    max_retries, backoff = _retry_policy()
    tries = 0

    state = breaker.before_call()
    headers = _request_headers({**(extra_headers or {}), "X-Circuit-State": state, "X-Retry-Count": "0"})

    try:
        with httpx.Client(timeout=timeout) as client:
            while True:
                resp = None
                exc = None
                try:
                    resp = client.post(url, json=payload, headers=headers)
                    if resp.status_code in ok_statuses:
                        breaker.on_success()
                        return resp
                    if not _should_retry(resp, None):
                        breaker.on_success()  # business outcome, not a circuit failure
                        resp.raise_for_status()
                        return resp
                except httpx.RequestError as e:
                    exc = e

                tries += 1
                headers["X-Retry-Count"] = str(tries)

                if tries > max_retries:
                    breaker.on_failure()
                    if exc:
                        raise exc
                    resp.raise_for_status()
                    raise RuntimeError("UPSTREAM_UNAVAILABLE")

                sleep_s = backoff * (2 ** (tries - 1))  # exponential backoff
                cap = getattr(settings, "HTTP_RETRY_MAX_SLEEP", 0.5)
                time.sleep(min(sleep_s, cap))
    finally:
        breaker.on_finish()


# ---------------- Notifications Adapter ---------------- #

class HttpNotifierClient(NotifierPort):
    """HTTP client for the notifications service with retry and circuit breaker."""

    def __init__(self, base_url: str | None = None, timeout: float | None = None):
        self.base_url = base_url or settings.NOTIFICATIONS_BASE_URL
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECS

    def notify(self, kind: str, payload: dict) -> None:
        """Queue a notification on the notifications service.

        Args:
            kind: ``orderUpdate`` or ``orderConfirmation``.
            payload: JSON-serializable body built by ``notifications``.

        Raises:
            RuntimeError, httpx.HTTPError: On any delivery failure; callers
                treat notifications as best-effort.
        """
        _post(
            _notifications_cb,
            f"{self.base_url}/notify",
            {"kind": kind, "to": payload.get("to"), "payload": payload},
            self.timeout,
            ok_statuses=(200, 202),
        )


# ---------------- Payments Adapter ---------------- #

class HttpPaymentsClient(PaymentsPort):
    """HTTP client for the payments service with retry and circuit breaker."""

    def __init__(self, base_url: str | None = None, timeout: float | None = None):
        self.base_url = base_url or settings.PAYMENTS_BASE_URL
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECS

    def create_session(self, order_id: str, order_number: str, amount_cents: int, currency: str) -> str:
        """Open a payment session for an order.

        The order number doubles as the idempotency key, so retries (ours
        or the customer's) land on the same session.

        Returns:
            str: The session id issued by the payments service.

        Raises:
            RuntimeError, httpx.HTTPError: Payments service unavailable or
                request rejected.
        """
        resp = _post(
            _payments_cb,
            f"{self.base_url}/sessions",
            {"order_id": order_id, "order_number": order_number, "amount_cents": amount_cents, "currency": currency},
            self.timeout,
            ok_statuses=(200, 201),
            extra_headers={"Idempotency-Key": order_number},
        )
        return resp.json()["session_id"]
