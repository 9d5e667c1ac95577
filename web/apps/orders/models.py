import uuid
from decimal import Decimal

from django.core.serializers.json import DjangoJSONEncoder
from django.db import models
from django.utils import timezone


def _money_field(**kwargs):
    # Eight places keeps percentage discounts exact enough that edits never drift.
    return models.DecimalField(max_digits=20, decimal_places=8, **kwargs)


class DocumentModel(models.Model):
    """Maps a model row to and from the dict documents used by the store."""

    class Meta:
        abstract = True

    @classmethod
    def column_values(cls, doc: dict) -> dict:
        values = {}
        for f in cls._meta.concrete_fields:
            if f.name not in doc:
                continue
            value = doc[f.name]
            if isinstance(f, models.DecimalField) and value is not None:
                value = Decimal(str(value)).quantize(Decimal(1).scaleb(-f.decimal_places))
            values[f.name] = value
        return values

    def to_document(self) -> dict:
        doc = {f.name: getattr(self, f.name) for f in self._meta.concrete_fields}
        doc["id"] = str(self.pk)
        return doc


class OrderModel(DocumentModel):
    # UUID PK expuesto en API
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order_number = models.CharField(max_length=40, unique=True)
    owner_user_ref = models.CharField(max_length=64, db_index=True)

    class Status(models.TextChoices):
        PROCESSING = "processing"
        PAID = "paid"
        CONFIRMED = "confirmed"
        SENT = "sent"
        DELIVERED = "delivered"
        CANCELLED = "cancelled"

    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PROCESSING)
    payment_enabled = models.BooleanField(default=False)

    items = models.JSONField(encoder=DjangoJSONEncoder)
    customer = models.JSONField(encoder=DjangoJSONEncoder)
    offer = models.JSONField(encoder=DjangoJSONEncoder, default=dict)
    original_values = models.JSONField(encoder=DjangoJSONEncoder, null=True, blank=True)

    subtotal = _money_field()
    tax = _money_field()
    shipping_fee = _money_field()
    total = _money_field()

    has_rental_items = models.BooleanField(default=False)
    has_mixed_items = models.BooleanField(default=False)
    revision = models.PositiveIntegerField(default=0)
    paid_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "orders"
        ordering = ["-created_at"]


class ProductModel(DocumentModel):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=200)
    brand = models.CharField(max_length=100, blank=True, null=True)
    price = _money_field()
    is_rentable = models.BooleanField(default=False)
    hourly_rate = _money_field(default=Decimal("0"))
    daily_rate = _money_field(default=Decimal("0"))
    image = models.URLField(max_length=500, blank=True, null=True)

    class Meta:
        db_table = "products"


class CartModel(DocumentModel):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user_ref = models.CharField(max_length=64, unique=True)
    items = models.JSONField(encoder=DjangoJSONEncoder, default=list)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "carts"


class WishlistModel(DocumentModel):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user_ref = models.CharField(max_length=64, unique=True)
    items = models.JSONField(encoder=DjangoJSONEncoder, default=list)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "wishlists"


class IdempotencyKey(models.Model):
    """Stored response for a client-supplied ``Idempotency-Key``.

    Keys are namespaced per caller: two users picking the same key get
    independent records.
    """

    user_ref = models.CharField(max_length=64)
    key = models.CharField(max_length=200)
    request_hash = models.CharField(max_length=64)
    response_status = models.PositiveSmallIntegerField(default=0)
    response_body = models.JSONField(encoder=DjangoJSONEncoder, default=dict)
    order_ref = models.CharField(max_length=64, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "idempotency_keys"
        constraints = [models.UniqueConstraint(fields=["user_ref", "key"], name="uniq_idempotency_user_key")]
