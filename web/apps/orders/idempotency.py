"""Idempotency utilities for safely handling duplicate requests.

This module stores and retrieves idempotency keys to safely de-duplicate
client requests that create orders (direct creation and checkout). It
supports creating an idempotent record, detecting conflicts when the same
key is used with a different payload, and finalizing a stored response so
subsequent retries can short-circuit.
"""

import hashlib
import json

from django.core.serializers.json import DjangoJSONEncoder
from django.db import IntegrityError, transaction

from .errors import ConflictError
from .models import IdempotencyKey


def _hash(scope: str, payload: dict) -> str:
    """Compute a stable SHA-256 hash for a request scope and payload.

    The payload is serialized with sorted keys and compact separators to
    ensure a deterministic representation before hashing. The scope keeps
    the same key from matching across different endpoints.
    """
    body = json.dumps({"scope": scope, "payload": payload}, sort_keys=True, separators=(",", ":"), cls=DjangoJSONEncoder)
    return hashlib.sha256(body.encode("utf-8")).hexdigest()


@transaction.atomic
def get_or_create_idempotent(user_ref: str, key: str, scope: str, payload: dict):
    """Get-or-create the caller's idempotency record for the given key and payload.

    Behavior:
        - First request with a new key for this caller: create a record and return (False, rec).
        - Retry with the same key and payload: lock and return (True, rec).
        - Same key but a different payload or endpoint: raise
          ``ConflictError("IDEMPOTENCY_CONFLICT")``.

    The create path runs in a nested savepoint so an IntegrityError only
    rolls back that block; the existing-record path takes a row lock
    (SELECT ... FOR UPDATE) to avoid races under concurrency.

    Records are looked up by ``(user_ref, key)``, so another caller reusing
    the key never sees this caller's stored response.

    Args:
        user_ref: Caller the key belongs to.
        key: Client-provided idempotency key.
        scope: Endpoint the key is used on, e.g. ``"orders"``.
        payload: Request payload used to compute the request hash.

    Returns:
        tuple[bool, IdempotencyKey]: (existing, rec).
    """
    h = _hash(scope, payload)

    try:
        with transaction.atomic():
            rec = IdempotencyKey.objects.create(user_ref=user_ref, key=key, request_hash=h, response_status=0, response_body={})
            return False, rec
    except IntegrityError:
        rec = IdempotencyKey.objects.select_for_update().get(user_ref=user_ref, key=key)
        if rec.request_hash != h:
            raise ConflictError("IDEMPOTENCY_CONFLICT")
        return True, rec


def finalize(rec: IdempotencyKey, status_code: int, body: dict, order_ref=None):
    """Persist the final response for an idempotent request.

    Subsequent retries return this stored response without re-running
    side effects (order creation, confirmation email, cart clear).
    """
    rec.response_status = status_code
    rec.response_body = body
    if order_ref is not None:
        rec.order_ref = str(order_ref)
    rec.save(update_fields=["response_status", "response_body", "order_ref"])
