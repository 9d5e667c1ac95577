"""Notifications service API built with FastAPI.

Accepts order notifications from the orders web service, stores them in
the outbox and delivers them as email in the background. Delivery uses
SMTP when ``SMTP_HOST`` is configured; otherwise messages are only logged,
which is what local development relies on.
"""

import logging
import os
import smtplib
import time
import uuid
from email.message import EmailMessage
from typing import Literal

import uvicorn
from fastapi import BackgroundTasks, FastAPI, HTTPException, Request
from pydantic import BaseModel, EmailStr, Field
from pythonjsonlogger import jsonlogger
from sqlalchemy import text

from repo import FAILED, SENT, OutboxRepo, engine, init_db

app = FastAPI(title="Notifications Service")

SMTP_HOST = os.getenv("SMTP_HOST")
SMTP_PORT = int(os.getenv("SMTP_PORT", "25"))
MAIL_FROM = os.getenv("MAIL_FROM", "orders@example.com")

logger = logging.getLogger("notifications")
if not logger.handlers:
    h = logging.StreamHandler()
    h.setFormatter(jsonlogger.JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s"))
    logger.addHandler(h)
    logger.setLevel(logging.INFO)


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


class NotifyRequest(BaseModel):
    """Notification handed over by the orders service.

    Attributes:
        kind: ``orderUpdate`` (admin edit or payment) or
            ``orderConfirmation`` (new order).
        to: Customer email address.
        payload: Rendered order payload; carries ``order_number``, the
            ``summary`` money snapshot and, for updates, ``changes``.
    """

    kind: Literal["orderUpdate", "orderConfirmation"]
    to: EmailStr
    payload: dict = Field(default_factory=dict)


class NotifyResponse(BaseModel):
    queued: bool
    id: uuid.UUID


def render_subject(kind: str, payload: dict) -> str:
    number = payload.get("order_number", "")
    if kind == "orderConfirmation":
        return f"Order Confirmation - {number}"
    return f"Order Update - {number}"


def render_body(kind: str, payload: dict) -> str:
    """Plain-text email body from the payload's summary lines."""
    lines = [f"Hello {payload.get('customer_name') or 'customer'},", ""]
    if kind == "orderConfirmation":
        lines.append(f"Thank you for your order {payload.get('order_number', '')}.")
    else:
        lines.append(f"Your order {payload.get('order_number', '')} has been updated:")
        lines.extend(f"  - {c['summary']}" for c in payload.get("changes", []))
    summary = payload.get("summary") or {}
    if summary:
        lines.append("")
        lines.append(f"Subtotal: ${summary.get('subtotal')}")
        lines.append(f"Tax: ${summary.get('tax')}")
        lines.append(f"Shipping: ${summary.get('shipping_fee')}")
        if summary.get("discount") not in (None, "0.00"):
            lines.append(f"Discount: -${summary.get('discount')}")
        lines.append(f"Total: ${summary.get('total')}")
    return "\n".join(lines)


def deliver(notification_id: uuid.UUID, kind: str, to: str, subject: str, payload: dict, request_id: str):
    """Send one queued notification and record the outcome."""
    repo = OutboxRepo()
    extra = {"request_id": request_id, "notification_id": str(notification_id), "kind": kind}
    if not SMTP_HOST:
        logger.info("notification delivered to log", extra={**extra, "subject": subject})
        repo.mark(notification_id, SENT)
        return

    msg = EmailMessage()
    msg["From"] = MAIL_FROM
    msg["To"] = to
    msg["Subject"] = subject
    msg.set_content(render_body(kind, payload))
    try:
        with smtplib.SMTP(SMTP_HOST, SMTP_PORT, timeout=10) as smtp:
            smtp.send_message(msg)
    except (OSError, smtplib.SMTPException) as e:
        logger.warning("notification delivery failed", extra={**extra, "error": str(e)})
        repo.mark(notification_id, FAILED, str(e))
        return
    logger.info("notification sent", extra=extra)
    repo.mark(notification_id, SENT)


@app.get("/health")
def health():
    """Liveness/health probe endpoint."""
    return {"ok": True}


@app.post("/notify", response_model=NotifyResponse, status_code=202)
def notify(req: NotifyRequest, request: Request, background: BackgroundTasks):
    """Queue a notification and deliver it after the response is sent.

    Returns:
        NotifyResponse: ``queued=True`` and the outbox id.
    """
    subject = render_subject(req.kind, req.payload)
    nid = OutboxRepo().enqueue(req.kind, str(req.to), subject, req.payload)
    background.add_task(deliver, nid, req.kind, str(req.to), subject, req.payload, request.state.request_id)
    return NotifyResponse(queued=True, id=nid)


@app.get("/notifications/{notification_id}")
def get_notification(notification_id: uuid.UUID):
    n = OutboxRepo().get(notification_id)
    if n is None:
        raise HTTPException(status_code=404, detail="NOT_FOUND")
    return {
        "id": n.id,
        "kind": n.kind,
        "to": n.recipient,
        "subject": n.subject,
        "status": n.status,
        "attempts": n.attempts,
        "last_error": n.last_error,
    }


@app.post("/retry")
def retry_pending(background: BackgroundTasks, request: Request):
    """Re-queue delivery for queued or failed notifications."""
    pending = OutboxRepo().pending()
    for n in pending:
        background.add_task(deliver, n.id, n.kind, n.recipient, n.subject, n.payload, request.state.request_id)
    return {"requeued": len(pending)}


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
        port=int(os.getenv("PORT", "9001")),
        workers=int(os.getenv("UVICORN_WORKERS", str(max(2, (os.cpu_count() or 1))))),
        log_level=os.getenv("LOG_LEVEL", "info"),
    )
