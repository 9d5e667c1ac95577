"""In-process adapters for the orders domain ports.

These implement ``StorePort``, ``NotifierPort`` and ``PaymentsPort``
without any database or network calls. They are intended for unit tests
and local development where deterministic behavior is useful and the
external services are not required.
"""

import copy
import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from .domain import NotifierPort, PaymentsPort, StorePort
from .errors import ConflictError

logger = logging.getLogger("orders.notifications")


def _matches(doc: dict, query: dict) -> bool:
    return all(doc.get(k) == v for k, v in query.items())


class InMemoryStore(StorePort):
    """Dict-backed implementation of ``StorePort``.

    Documents are deep-copied on the way in and out so callers can never
    mutate stored state by accident. A lock keeps each single operation
    consistent when shared between threads.
    """

    def __init__(self):
        self._collections: dict[str, dict[str, dict]] = {}
        self._lock = threading.RLock()

    def _docs(self, collection: str) -> dict[str, dict]:
        return self._collections.setdefault(collection, {})

    def find_by_id(self, collection: str, id: str) -> Optional[dict]:
        with self._lock:
            doc = self._docs(collection).get(str(id))
            return copy.deepcopy(doc) if doc is not None else None

    def create(self, collection: str, doc: dict) -> dict:
        with self._lock:
            stored = copy.deepcopy(doc)
            stored["id"] = str(stored.get("id") or uuid.uuid4())
            if not stored.get("created_at"):
                stored["created_at"] = datetime.now(timezone.utc)
            self._docs(collection)[stored["id"]] = stored
            return copy.deepcopy(stored)

    def update_by_id(self, collection: str, id: str, patch: dict, expected_revision: Optional[int] = None) -> Optional[dict]:
        with self._lock:
            doc = self._docs(collection).get(str(id))
            if doc is None:
                return None
            if expected_revision is not None and doc.get("revision", 0) != expected_revision:
                raise ConflictError("REVISION_CONFLICT")
            doc.update(copy.deepcopy(patch))
            return copy.deepcopy(doc)

    def find_one(self, collection: str, query: dict) -> Optional[dict]:
        with self._lock:
            doc = next((d for d in self._docs(collection).values() if _matches(d, query)), None)
            return copy.deepcopy(doc) if doc is not None else None

    def find_many(self, collection: str, query: dict, order_by: Optional[str] = None) -> List[dict]:
        with self._lock:
            docs = [copy.deepcopy(d) for d in self._docs(collection).values() if _matches(d, query)]
        if order_by:
            key = order_by.lstrip("-")
            docs.sort(key=lambda d: d.get(key), reverse=order_by.startswith("-"))
        return docs

    def upsert_one(self, collection: str, query: dict, patch: dict) -> dict:
        with self._lock:
            doc = next((d for d in self._docs(collection).values() if _matches(d, query)), None)
            if doc is None:
                return self.create(collection, {**query, **patch})
            doc.update(copy.deepcopy(patch))
            return copy.deepcopy(doc)

    def delete_one(self, collection: str, query: dict) -> bool:
        with self._lock:
            docs = self._docs(collection)
            key = next((k for k, d in docs.items() if _matches(d, query)), None)
            if key is None:
                return False
            del docs[key]
            return True


class NotifierStub(NotifierPort):
    """Stub implementation of ``NotifierPort``.

    Logs every notification and keeps it in ``sent`` as ``(kind, payload)``
    so tests can assert on what would have been delivered.
    """

    def __init__(self):
        self.sent: List[Tuple[str, dict]] = []

    def notify(self, kind: str, payload: dict) -> None:
        self.sent.append((kind, payload))
        logger.info("notification queued", extra={"kind": kind, "order_number": payload.get("order_number")})


class PaymentsStub(PaymentsPort):
    """Stub implementation of ``PaymentsPort``.

    Opens a session for any positive amount and returns a generated id.
    Non-positive amounts are rejected with ``ValueError``.
    """

    def create_session(self, order_id: str, order_number: str, amount_cents: int, currency: str) -> str:
        if amount_cents <= 0:
            raise ValueError("INVALID_AMOUNT")
        return f"cs_{uuid.uuid4().hex}"
