"""Pydantic schemas for the orders API.

Request DTOs validate and normalize incoming JSON before anything reaches
the domain; ``to_domain`` helpers turn them into the dataclasses the
services work with. ``OrderReadDTO`` is the single response shape for an
order and is where money gets rounded to cents.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from .domain import (
    Address,
    CustomerSnapshot,
    ItemMode,
    LineItem,
    Offer,
    OfferType,
    Order,
    RentalDetails,
    RentalUnit,
)
from .lifecycle import OrderLifecycle
from .money import MAX_AMOUNT, round_money
from .pricing import discount_for


class RentalIn(BaseModel):
    """Rental terms of an incoming line item."""

    unit: RentalUnit
    rate: Decimal = Field(gt=0, le=MAX_AMOUNT, allow_inf_nan=False)
    duration: int = Field(ge=1)
    return_due_at: Optional[datetime] = None

    def to_domain(self) -> RentalDetails:
        return RentalDetails(unit=self.unit, rate=self.rate, duration=self.duration, return_due_at=self.return_due_at)


class LineItemIn(BaseModel):
    """Input schema for a single order line item.

    Attributes:
        product_ref: Catalog product identifier.
        name: Product name snapshot.
        unit_price: Purchase price snapshot, non-negative.
        quantity: Positive integer indicating units requested.
        mode: ``purchase`` or ``rental``; ``rental`` requires ``rental``.
    """

    product_ref: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=200)
    unit_price: Decimal = Field(ge=0, le=MAX_AMOUNT, allow_inf_nan=False)
    quantity: int = Field(default=1, ge=1)
    mode: ItemMode = ItemMode.PURCHASE
    rental: Optional[RentalIn] = None
    image: Optional[str] = None

    @model_validator(mode="after")
    def check_rental(self):
        if (self.mode is ItemMode.RENTAL) != (self.rental is not None):
            raise ValueError("rental details are required for rental items and only for them")
        return self

    def to_domain(self) -> LineItem:
        return LineItem(
            product_ref=self.product_ref,
            name=self.name,
            unit_price=self.unit_price,
            quantity=self.quantity,
            mode=self.mode,
            rental=self.rental.to_domain() if self.rental else None,
            image=self.image,
        )


class AddressIn(BaseModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None


class CustomerIn(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    email: EmailStr
    phone: Optional[str] = Field(default=None, max_length=32)
    address: AddressIn = Field(default_factory=AddressIn)

    def to_domain(self) -> CustomerSnapshot:
        return CustomerSnapshot(
            name=self.name,
            email=str(self.email),
            phone=self.phone,
            address=Address(**self.address.model_dump()),
        )


class CreateOrderDTO(BaseModel):
    """Schema for creating an order from explicit line items."""

    items: list[LineItemIn] = Field(min_length=1)
    customer: CustomerIn


class OfferIn(BaseModel):
    """Offer as sent by the admin back-office.

    Percentage values outside ``[0, 100]`` are rejected here rather than
    clamped.
    """

    type: OfferType = OfferType.NONE
    value: Decimal = Field(default=Decimal("0"), ge=0, le=MAX_AMOUNT, allow_inf_nan=False)
    description: Optional[str] = Field(default=None, max_length=200)

    @model_validator(mode="after")
    def check_percentage(self):
        if self.type is OfferType.PERCENTAGE and self.value > 100:
            raise ValueError("percentage offers must be between 0 and 100")
        return self

    def to_domain(self) -> Offer:
        return Offer(type=self.type, value=self.value, description=self.description)


class OrderPatchDTO(BaseModel):
    """Admin edit payload. Omitted fields are left untouched.

    ``revision`` is the order revision the admin last saw; when given, the
    edit is refused if the order changed since.
    """

    model_config = ConfigDict(extra="forbid")

    status: Optional[str] = None
    shipping_fee: Optional[Decimal] = Field(default=None, ge=0, le=MAX_AMOUNT, allow_inf_nan=False)
    tax: Optional[Decimal] = Field(default=None, ge=0, le=MAX_AMOUNT, allow_inf_nan=False)
    offer: Optional[OfferIn] = None
    payment_enabled: Optional[bool] = None
    revision: Optional[int] = Field(default=None, ge=0)

    def to_patch(self) -> dict:
        patch = self.model_dump(exclude_none=True, exclude={"revision", "offer"})
        if self.offer is not None:
            patch["offer"] = self.offer.to_domain()
        return patch


class CartItemIn(BaseModel):
    product_ref: str = Field(min_length=1, max_length=64)


class CartEntryPatchDTO(BaseModel):
    """Cart line update: a new quantity, a mode switch, or both."""

    quantity: Optional[int] = Field(default=None, ge=1)
    mode: Optional[ItemMode] = None
    rental_unit: Optional[RentalUnit] = None
    rental_duration: Optional[int] = Field(default=None, ge=1)

    @model_validator(mode="after")
    def check_not_empty(self):
        if self.quantity is None and self.mode is None:
            raise ValueError("quantity or mode is required")
        return self


class CheckoutDTO(BaseModel):
    customer: CustomerIn
    rental_unit: Optional[RentalUnit] = None
    rental_duration: Optional[int] = Field(default=None, ge=1)


class PaymentWebhookDTO(BaseModel):
    """Event posted by the payments service."""

    type: str
    order_id: str = Field(min_length=1)
    session_id: Optional[str] = None

    @field_validator("type")
    @classmethod
    def normalize_type(cls, v: str) -> str:
        return v.strip()


def _money(amount: Decimal) -> str:
    return str(round_money(amount))


class OrderReadDTO(BaseModel):
    """Response shape for an order. Money is rounded to cents here."""

    id: str
    order_number: str
    owner_user_ref: str
    status: str
    payment_enabled: bool
    items: list[dict]
    customer: dict
    subtotal: str
    tax: str
    shipping_fee: str
    discount: str
    total: str
    offer: dict
    original_values: Optional[dict] = None
    has_rental_items: bool
    has_mixed_items: bool
    next_statuses: list[str]
    revision: int
    paid_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_order(cls, order: Order, lifecycle: Optional[OrderLifecycle] = None) -> "OrderReadDTO":
        """Build the response for ``order``.

        ``next_statuses`` follows ``lifecycle``; without one the enforced
        transition graph is assumed.
        """
        base_total = order.subtotal + order.tax + order.shipping_fee
        original = None
        if order.original_values is not None:
            ov = order.original_values
            original = {
                "subtotal": _money(ov.subtotal),
                "tax": _money(ov.tax),
                "shipping_fee": _money(ov.shipping_fee),
                "total": _money(ov.total),
                "tax_rate": str(ov.tax_rate),
            }
        return cls(
            id=order.id,
            order_number=order.order_number,
            owner_user_ref=order.owner_user_ref,
            status=order.status.value,
            payment_enabled=order.payment_enabled,
            items=[item.to_document() for item in order.items],
            customer=order.customer.to_document(),
            subtotal=_money(order.subtotal),
            tax=_money(order.tax),
            shipping_fee=_money(order.shipping_fee),
            discount=_money(discount_for(order.offer, base_total)),
            total=_money(order.total),
            offer=order.offer.to_document(),
            original_values=original,
            has_rental_items=order.has_rental_items,
            has_mixed_items=order.has_mixed_items,
            next_statuses=sorted(s.value for s in (lifecycle or OrderLifecycle()).next_statuses(order.status)),
            revision=order.revision,
            paid_at=order.paid_at,
            created_at=order.created_at,
            updated_at=order.updated_at,
        )
