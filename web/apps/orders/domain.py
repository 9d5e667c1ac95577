"""Domain models and ports for orders, carts and the product catalog.

This module contains the dataclasses that make up an order (line items,
rental details, offers, customer snapshot), the enums used across the
orders core, and the protocol definitions (ports) for the external
collaborators: the document store, the notifier and the payment provider.

Entities convert to and from plain "documents" (dicts) so any store that
can persist JSON-like data can hold them. Top-level money fields stay
``Decimal``; nested money is serialized as strings to keep precision.
"""

import random
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Protocol, Optional

from .errors import ValidationError
from .money import ZERO, HUNDRED, to_money, money_str


# ---- Collections ----
ORDERS = "orders"
CARTS = "carts"
WISHLISTS = "wishlists"
PRODUCTS = "products"


# ---- Enums ----
class OrderStatus(str, Enum):
    """Lifecycle statuses of an order."""

    PROCESSING = "processing"
    PAID = "paid"
    CONFIRMED = "confirmed"
    SENT = "sent"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class ItemMode(str, Enum):
    PURCHASE = "purchase"
    RENTAL = "rental"


class RentalUnit(str, Enum):
    """Billing period of a rental line."""

    HOURLY = "hourly"
    DAILY = "daily"

    @property
    def period(self) -> timedelta:
        return timedelta(hours=1) if self is RentalUnit.HOURLY else timedelta(days=1)


class OfferType(str, Enum):
    NONE = "none"
    FIXED = "fixed"
    PERCENTAGE = "percentage"


def _enum(enum_cls, value, code: str):
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationError(code)


def _parse_dt(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def _dt_str(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


# ---- Entities / DTOs ----
@dataclass(frozen=True)
class RentalDetails:
    """Rental terms of a line item.

    Attributes:
        unit: Billing period (hourly or daily).
        rate: Price per period, snapshotted from the catalog. Never zero.
        duration: Number of periods, at least one.
        return_due_at: When the rented product must be returned.
    """

    unit: RentalUnit
    rate: Decimal
    duration: int
    return_due_at: Optional[datetime] = None

    def __post_init__(self):
        if self.rate <= ZERO:
            raise ValidationError("RENTAL_RATE_UNAVAILABLE")
        if isinstance(self.duration, bool) or not isinstance(self.duration, int) or self.duration < 1:
            raise ValidationError("INVALID_RENTAL_DURATION")

    def to_document(self) -> dict:
        return {
            "unit": self.unit.value,
            "rate": money_str(self.rate),
            "duration": self.duration,
            "return_due_at": _dt_str(self.return_due_at),
        }

    @classmethod
    def from_document(cls, doc: dict) -> "RentalDetails":
        return cls(
            unit=_enum(RentalUnit, doc["unit"], "INVALID_RENTAL_UNIT"),
            rate=to_money(doc["rate"], "RENTAL_RATE_UNAVAILABLE"),
            duration=int(doc["duration"]),
            return_due_at=_parse_dt(doc.get("return_due_at")),
        )


@dataclass(frozen=True)
class LineItem:
    """A single product line in an order.

    Name and price are copies taken when the line was created, so totals
    of historical orders never follow later catalog changes. The dataclass
    is frozen because items are immutable once they belong to an order.

    Attributes:
        product_ref: Catalog product identifier (weak reference).
        name: Product name at snapshot time.
        unit_price: Purchase price at snapshot time.
        quantity: Number of units, at least one.
        mode: Purchase or rental.
        rental: Rental terms; present if and only if ``mode`` is rental.
        image: Optional product image URL, display only.
    """

    product_ref: str
    name: str
    unit_price: Decimal
    quantity: int = 1
    mode: ItemMode = ItemMode.PURCHASE
    rental: Optional[RentalDetails] = None
    image: Optional[str] = None

    def __post_init__(self):
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int) or self.quantity < 1:
            raise ValidationError("INVALID_QUANTITY")
        if self.unit_price < ZERO:
            raise ValidationError("INVALID_UNIT_PRICE")
        if (self.mode is ItemMode.RENTAL) != (self.rental is not None):
            raise ValidationError("INVALID_RENTAL_DETAILS")

    @property
    def is_rental(self) -> bool:
        return self.mode is ItemMode.RENTAL

    @property
    def line_total(self) -> Decimal:
        if self.rental is not None:
            return self.rental.rate * self.rental.duration * self.quantity
        return self.unit_price * self.quantity

    def to_document(self) -> dict:
        return {
            "product_ref": self.product_ref,
            "name": self.name,
            "unit_price": money_str(self.unit_price),
            "quantity": self.quantity,
            "mode": self.mode.value,
            "rental": self.rental.to_document() if self.rental else None,
            "image": self.image,
        }

    @classmethod
    def from_document(cls, doc: dict) -> "LineItem":
        rental = doc.get("rental")
        return cls(
            product_ref=str(doc["product_ref"]),
            name=doc["name"],
            unit_price=to_money(doc["unit_price"], "INVALID_UNIT_PRICE"),
            quantity=doc.get("quantity", 1),
            mode=_enum(ItemMode, doc.get("mode", ItemMode.PURCHASE.value), "INVALID_ITEM_MODE"),
            rental=RentalDetails.from_document(rental) if rental else None,
            image=doc.get("image"),
        )


@dataclass(frozen=True)
class Offer:
    """Discount applied to an order's base total.

    ``value`` is a currency amount for fixed offers and a percentage in
    ``[0, 100]`` for percentage offers. A ``none`` offer never discounts.
    """

    type: OfferType = OfferType.NONE
    value: Decimal = ZERO
    description: Optional[str] = None

    def validate(self) -> "Offer":
        if self.value < ZERO:
            raise ValidationError("INVALID_OFFER_VALUE")
        if self.type is OfferType.PERCENTAGE and self.value > HUNDRED:
            raise ValidationError("INVALID_OFFER_VALUE")
        return self

    def to_document(self) -> dict:
        return {"type": self.type.value, "value": money_str(self.value), "description": self.description}

    @classmethod
    def from_document(cls, doc: Optional[dict]) -> "Offer":
        if not doc:
            return cls()
        return cls(
            type=_enum(OfferType, doc.get("type", OfferType.NONE.value), "INVALID_OFFER_TYPE"),
            value=to_money(doc.get("value", 0), "INVALID_OFFER_VALUE"),
            description=doc.get("description"),
        )


@dataclass(frozen=True)
class Address:
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None


@dataclass(frozen=True)
class CustomerSnapshot:
    """Customer contact data copied into the order at creation time.

    Never re-synced from the live user profile.
    """

    name: str
    email: str
    phone: Optional[str] = None
    address: Address = field(default_factory=Address)

    def to_document(self) -> dict:
        return {
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "address": {
                "street": self.address.street,
                "city": self.address.city,
                "state": self.address.state,
                "postal_code": self.address.postal_code,
            },
        }

    @classmethod
    def from_document(cls, doc: dict) -> "CustomerSnapshot":
        return cls(
            name=doc["name"],
            email=doc["email"],
            phone=doc.get("phone"),
            address=Address(**(doc.get("address") or {})),
        )


@dataclass(frozen=True)
class OriginalValues:
    """Financial baseline captured on the first admin edit. Write-once."""

    subtotal: Decimal
    tax: Decimal
    shipping_fee: Decimal
    total: Decimal
    tax_rate: Decimal

    def to_document(self) -> dict:
        return {
            "subtotal": money_str(self.subtotal),
            "tax": money_str(self.tax),
            "shipping_fee": money_str(self.shipping_fee),
            "total": money_str(self.total),
            "tax_rate": money_str(self.tax_rate),
        }

    @classmethod
    def from_document(cls, doc: Optional[dict]) -> Optional["OriginalValues"]:
        if not doc:
            return None
        return cls(**{k: Decimal(str(doc[k])) for k in ("subtotal", "tax", "shipping_fee", "total", "tax_rate")})


def generate_order_number(now_ms: Optional[int] = None) -> str:
    """Return a human-referenceable order number ``ORD-<epochMillis>-<NNN>``."""
    millis = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"ORD-{millis}-{random.randint(0, 999):03d}"


@dataclass
class Order:
    """Order aggregate.

    Attributes:
        id: Store identifier, or None if not yet saved.
        order_number: Generated, globally unique reference.
        owner_user_ref: Purchasing user (weak reference).
        items: Frozen line items in display order. Never empty.
        customer: Contact snapshot taken at creation.
        status: Current OrderStatus.
        payment_enabled: Whether the customer is offered "Pay Now".
            Independent of ``status``.
        subtotal, tax, shipping_fee, total: Money fields; ``total`` always
            equals ``max(0, subtotal + tax + shipping_fee - discount)``.
        offer: Discount currently applied.
        original_values: Baseline captured on the first admin edit.
        revision: Incremented on every write; used for optimistic
            concurrency on admin edits.
        paid_at: When the payment provider confirmed payment; set once.
    """

    id: Optional[str]
    order_number: str
    owner_user_ref: str
    items: tuple
    customer: CustomerSnapshot
    status: OrderStatus = OrderStatus.PROCESSING
    payment_enabled: bool = False
    subtotal: Decimal = ZERO
    tax: Decimal = ZERO
    shipping_fee: Decimal = ZERO
    total: Decimal = ZERO
    offer: Offer = field(default_factory=Offer)
    original_values: Optional[OriginalValues] = None
    revision: int = 0
    paid_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def has_rental_items(self) -> bool:
        return any(item.is_rental for item in self.items)

    @property
    def has_mixed_items(self) -> bool:
        return self.has_rental_items and any(not item.is_rental for item in self.items)

    def to_document(self) -> dict:
        doc = {
            "order_number": self.order_number,
            "owner_user_ref": self.owner_user_ref,
            "items": [item.to_document() for item in self.items],
            "customer": self.customer.to_document(),
            "status": self.status.value,
            "payment_enabled": self.payment_enabled,
            "subtotal": self.subtotal,
            "tax": self.tax,
            "shipping_fee": self.shipping_fee,
            "total": self.total,
            "offer": self.offer.to_document(),
            "original_values": self.original_values.to_document() if self.original_values else None,
            "has_rental_items": self.has_rental_items,
            "has_mixed_items": self.has_mixed_items,
            "revision": self.revision,
            "paid_at": self.paid_at,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
        if self.id is not None:
            doc["id"] = self.id
        return doc

    @classmethod
    def from_document(cls, doc: dict) -> "Order":
        return cls(
            id=str(doc["id"]) if doc.get("id") is not None else None,
            order_number=doc["order_number"],
            owner_user_ref=doc["owner_user_ref"],
            items=tuple(LineItem.from_document(i) for i in doc["items"]),
            customer=CustomerSnapshot.from_document(doc["customer"]),
            status=_enum(OrderStatus, doc.get("status", OrderStatus.PROCESSING.value), "INVALID_STATUS"),
            payment_enabled=bool(doc.get("payment_enabled", False)),
            subtotal=Decimal(str(doc["subtotal"])),
            tax=Decimal(str(doc["tax"])),
            shipping_fee=Decimal(str(doc["shipping_fee"])),
            total=Decimal(str(doc["total"])),
            offer=Offer.from_document(doc.get("offer")),
            original_values=OriginalValues.from_document(doc.get("original_values")),
            revision=int(doc.get("revision", 0)),
            paid_at=_parse_dt(doc.get("paid_at")),
            created_at=_parse_dt(doc.get("created_at")),
            updated_at=_parse_dt(doc.get("updated_at")),
        )


@dataclass(frozen=True)
class Product:
    """Catalog read model consumed when freezing cart prices at checkout."""

    id: str
    name: str
    price: Decimal
    brand: Optional[str] = None
    is_rentable: bool = False
    hourly_rate: Decimal = ZERO
    daily_rate: Decimal = ZERO
    image: Optional[str] = None

    def rate_for(self, unit: RentalUnit) -> Decimal:
        if not self.is_rentable:
            return ZERO
        return self.hourly_rate if unit is RentalUnit.HOURLY else self.daily_rate

    @classmethod
    def from_document(cls, doc: dict) -> "Product":
        return cls(
            id=str(doc["id"]),
            name=doc["name"],
            price=Decimal(str(doc["price"])),
            brand=doc.get("brand"),
            is_rentable=bool(doc.get("is_rentable", False)),
            hourly_rate=Decimal(str(doc.get("hourly_rate") or 0)),
            daily_rate=Decimal(str(doc.get("daily_rate") or 0)),
            image=doc.get("image"),
        )


# ---- Ports (DIP) ----
class StorePort(Protocol):
    """Port describing the document store used by the orders core.

    Documents are dicts keyed by field name; every document has an ``id``.
    Implementations must raise ``StoreUnavailable`` when the backend is
    unreachable.
    """

    def find_by_id(self, collection: str, id: str) -> Optional[dict]:
        raise NotImplementedError()

    def create(self, collection: str, doc: dict) -> dict:
        raise NotImplementedError()

    def update_by_id(
        self, collection: str, id: str, patch: dict, expected_revision: Optional[int] = None
    ) -> Optional[dict]:
        """Apply ``patch`` to the document and return the updated document.

        When ``expected_revision`` is given the write only happens if the
        stored ``revision`` still matches; otherwise ``ConflictError`` is
        raised. Returns None when the document does not exist.
        """
        raise NotImplementedError()

    def find_one(self, collection: str, query: dict) -> Optional[dict]:
        raise NotImplementedError()

    def find_many(self, collection: str, query: dict, order_by: Optional[str] = None) -> list[dict]:
        raise NotImplementedError()

    def upsert_one(self, collection: str, query: dict, patch: dict) -> dict:
        raise NotImplementedError()

    def delete_one(self, collection: str, query: dict) -> bool:
        raise NotImplementedError()


class NotifierPort(Protocol):
    """Port describing outbound customer notifications.

    Delivery is best-effort; callers treat any exception as a failed
    delivery and carry on.
    """

    def notify(self, kind: str, payload: dict) -> None:
        raise NotImplementedError()


class PaymentsPort(Protocol):
    """Port describing the payment provider.

    The provider hosts the payment flow and later reports completion
    through the payment webhook.
    """

    def create_session(self, order_id: str, order_number: str, amount_cents: int, currency: str) -> str:
        """Open a payment session and return its identifier."""
        raise NotImplementedError()
