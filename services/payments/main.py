"""Payments service API built with FastAPI.

This module plays the external payment processor for the orders web
service. It opens payment sessions covering an order's total and, when a
session completes, notifies the orders service through its payment
webhook. Validation is performed with Pydantic models, while persistence
is delegated to the SQLAlchemy-backed repository in ``repo.SessionsRepo``.
"""

import logging
import os
import time
import uuid
from typing import Annotated, Optional

import httpx
import uvicorn
from fastapi import FastAPI, Header, HTTPException, Request
from pydantic import BaseModel, Field, constr
from pythonjsonlogger import jsonlogger
from sqlalchemy import select, text
from sqlalchemy.exc import IntegrityError

from repo import IdempotencyKey, SessionsRepo, canonical_hash, engine, get_session, init_db

app = FastAPI(title="Payments Service")

Currency = constr(pattern=r"^[A-Z]{3}$")

ORDERS_WEBHOOK_URL = os.getenv("ORDERS_WEBHOOK_URL", "http://web:8000/api/payments/webhook/")
WEBHOOK_SECRET = os.getenv("PAYMENTS_WEBHOOK_SECRET", "dev-webhook-secret")
WEBHOOK_TIMEOUT_SECS = float(os.getenv("WEBHOOK_TIMEOUT_SECS", "5.0"))
COMPLETED_EVENT = "checkout.session.completed"


@app.on_event("startup")
def _startup_db():
    # espera activa breve hasta que la DB acepte conexiones
    deadline = time.time() + 30  # 30s
    while True:
        try:
            with engine.connect() as conn:
                conn.execute(text("select 1"))
            break
        except Exception:
            if time.time() > deadline:
                raise
            time.sleep(1)
    init_db()


logger = logging.getLogger("payments")
if not logger.handlers:
    h = logging.StreamHandler()
    h.setFormatter(jsonlogger.JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s"))
    logger.addHandler(h)
    logger.setLevel(logging.INFO)


class SessionRequest(BaseModel):
    """Request body for opening a payment session.

    Attributes:
        order_id: Orders service id of the order being paid.
        order_number: Human-readable order reference.
        amount_cents: Positive amount in minor currency units (cents).
        currency: Three-letter ISO currency code (e.g., USD).
    """

    order_id: str = Field(min_length=1, max_length=64)
    order_number: str = Field(min_length=1, max_length=40)
    amount_cents: int = Field(gt=0)
    currency: Currency


class SessionResponse(BaseModel):
    session_id: str
    status: str


@app.get("/health")
def health():
    """Liveness/health probe endpoint."""
    return {"ok": True}


@app.post("/sessions", response_model=SessionResponse, status_code=201)
def create_session(
    req: SessionRequest,
    idempotency_key: Annotated[Optional[str], Header(alias="Idempotency-Key")] = None,
):
    """Open a payment session with optional idempotency.

    With an ``Idempotency-Key`` header, retries with the same key and
    identical payload return the session created by the first request. If
    the key is reused with a different payload (for example the order
    total changed after an admin edit), the endpoint responds with 409.

    Raises:
        HTTPException: 409 on idempotency conflict; 500 when the key
            record cannot be read back.
    """
    payload_hash = canonical_hash(req.model_dump())

    if not idempotency_key:
        sid = SessionsRepo().create(req.order_id, req.order_number, req.amount_cents, req.currency)
        return SessionResponse(session_id=sid, status="open")

    with get_session() as s:
        try:
            s.add(IdempotencyKey(key=idempotency_key, request_hash=payload_hash))
            s.commit()
        except IntegrityError:
            s.rollback()
            rec = s.execute(
                select(IdempotencyKey).where(IdempotencyKey.key == idempotency_key).with_for_update()
            ).scalars().first()
            if not rec:
                raise HTTPException(status_code=500, detail="IDEMPOTENCY_LOOKUP_ERROR")
            if rec.request_hash != payload_hash:
                raise HTTPException(status_code=409, detail="IDEMPOTENCY_CONFLICT")
            if rec.session_id:
                existing = SessionsRepo().get(rec.session_id)
                return SessionResponse(session_id=rec.session_id, status=existing.status if existing else "open")

        sid = SessionsRepo().create(req.order_id, req.order_number, req.amount_cents, req.currency)
        rec = s.get(IdempotencyKey, idempotency_key)
        rec.session_id = sid
        s.add(rec)
        s.commit()
        return SessionResponse(session_id=sid, status="open")


@app.get("/sessions/{session_id}", response_model=SessionResponse)
def get_payment_session(session_id: str):
    ps = SessionsRepo().get(session_id)
    if ps is None:
        raise HTTPException(status_code=404, detail="NOT_FOUND")
    return SessionResponse(session_id=ps.id, status=ps.status)


@app.post("/sessions/{session_id}/complete")
def complete_session(session_id: str, request: Request):
    """Complete a session and report it to the orders service.

    Completion is recorded even when the webhook call fails, so calling
    this endpoint again re-sends the webhook; the orders service treats
    repeated completions as a no-op.
    """
    ps = SessionsRepo().complete(session_id)
    if ps is None:
        raise HTTPException(status_code=404, detail="NOT_FOUND")

    rid = request.state.request_id
    event = {"type": COMPLETED_EVENT, "order_id": ps.order_id, "session_id": ps.id}
    try:
        resp = httpx.post(
            ORDERS_WEBHOOK_URL,
            json=event,
            headers={"X-Webhook-Secret": WEBHOOK_SECRET, "X-Request-ID": rid},
            timeout=WEBHOOK_TIMEOUT_SECS,
        )
    except httpx.RequestError as e:
        logger.warning("webhook delivery failed", extra={"request_id": rid, "session_id": ps.id, "error": str(e)})
        raise HTTPException(status_code=502, detail="WEBHOOK_UNREACHABLE")

    logger.info(
        "payment completed",
        extra={"request_id": rid, "session_id": ps.id, "order_number": ps.order_number, "webhook_status": resp.status_code},
    )
    return {"session_id": ps.id, "status": ps.status, "webhook_status": resp.status_code}


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = rid
    try:
        response = await call_next(request)
    finally:
        logger.info("request handled", extra={"request_id": rid, "path": request.url.path, "method": request.method})
    response.headers["X-Request-ID"] = rid
    return response


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "9002")),
        workers=int(os.getenv("UVICORN_WORKERS", str(max(2, (os.cpu_count() or 1))))),
        log_level=os.getenv("LOG_LEVEL", "info"),
    )
