"""Repository layer persisting orders-core documents with the Django ORM.

``DjangoStore`` implements ``StorePort`` over one model per collection so
the domain layer only ever sees plain dicts and is not coupled to Django
ORM details. Database errors surface as ``StoreUnavailable``.
"""

from contextlib import contextmanager

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import DatabaseError

from .domain import CARTS, ORDERS, PRODUCTS, WISHLISTS
from .errors import ConflictError, StoreUnavailable
from .models import CartModel, OrderModel, ProductModel, WishlistModel

MODELS = {
    ORDERS: OrderModel,
    PRODUCTS: ProductModel,
    CARTS: CartModel,
    WISHLISTS: WishlistModel,
}


@contextmanager
def _database():
    try:
        yield
    except DatabaseError as exc:
        raise StoreUnavailable() from exc


class DjangoStore:
    """Document store backed by the configured Django database."""

    def _model(self, collection: str):
        try:
            return MODELS[collection]
        except KeyError:
            raise ValueError(f"unknown collection {collection!r}")

    def _by_id(self, model, id: str):
        try:
            return model.objects.filter(pk=id)
        except DjangoValidationError:
            # Malformed UUID: nothing can match.
            return model.objects.none()

    def find_by_id(self, collection: str, id: str) -> dict | None:
        model = self._model(collection)
        with _database():
            obj = self._by_id(model, id).first()
        return obj.to_document() if obj else None

    def create(self, collection: str, doc: dict) -> dict:
        model = self._model(collection)
        with _database():
            obj = model.objects.create(**model.column_values(doc))
        return obj.to_document()

    def update_by_id(self, collection: str, id: str, patch: dict, expected_revision: int | None = None) -> dict | None:
        """Write ``patch`` with a single UPDATE.

        With ``expected_revision`` the UPDATE is filtered on the stored
        revision, so a concurrent writer makes it match zero rows.
        """
        model = self._model(collection)
        with _database():
            qs = self._by_id(model, id)
            if expected_revision is not None:
                qs = qs.filter(revision=expected_revision)
            if not qs.update(**model.column_values(patch)):
                if expected_revision is not None and self._by_id(model, id).exists():
                    raise ConflictError("REVISION_CONFLICT")
                return None
            return self._by_id(model, id).get().to_document()

    def find_one(self, collection: str, query: dict) -> dict | None:
        model = self._model(collection)
        with _database():
            obj = model.objects.filter(**query).first()
        return obj.to_document() if obj else None

    def find_many(self, collection: str, query: dict, order_by: str | None = None) -> list[dict]:
        model = self._model(collection)
        qs = model.objects.filter(**query)
        if order_by:
            qs = qs.order_by(order_by)
        with _database():
            return [obj.to_document() for obj in qs]

    def upsert_one(self, collection: str, query: dict, patch: dict) -> dict:
        model = self._model(collection)
        with _database():
            obj, _ = model.objects.update_or_create(defaults=model.column_values(patch), **query)
        return obj.to_document()

    def delete_one(self, collection: str, query: dict) -> bool:
        model = self._model(collection)
        with _database():
            obj = model.objects.filter(**query).first()
            if obj is None:
                return False
            obj.delete()
        return True
