"""Per-user cart and wishlist aggregates.

Both are singleton documents keyed by ``user_ref`` and created lazily on
the first write. Cart entries can switch between purchase and rental
until checkout, when :meth:`CartService.to_order_items` freezes them into
order line items using the live catalog price.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from .domain import (
    CARTS,
    PRODUCTS,
    WISHLISTS,
    ItemMode,
    LineItem,
    Product,
    RentalDetails,
    RentalUnit,
    StorePort,
)
from .errors import NotFoundError, ValidationError
from .money import ZERO, money_str


@dataclass(frozen=True)
class CartEntry:
    """A product in a cart.

    ``unit_price`` is the price seen when the product was added; checkout
    re-reads the catalog. Rental unit and duration only matter in rental
    mode.
    """

    product_ref: str
    name: str
    unit_price: Decimal
    quantity: int = 1
    mode: ItemMode = ItemMode.PURCHASE
    rental_unit: Optional[RentalUnit] = None
    rental_duration: Optional[int] = None
    image: Optional[str] = None

    @classmethod
    def for_product(cls, product: Product) -> "CartEntry":
        return cls(product_ref=product.id, name=product.name, unit_price=product.price, image=product.image)

    def to_document(self) -> dict:
        return {
            "product_ref": self.product_ref,
            "name": self.name,
            "unit_price": money_str(self.unit_price),
            "quantity": self.quantity,
            "mode": self.mode.value,
            "rental_unit": self.rental_unit.value if self.rental_unit else None,
            "rental_duration": self.rental_duration,
            "image": self.image,
        }

    @classmethod
    def from_document(cls, doc: dict) -> "CartEntry":
        unit = doc.get("rental_unit")
        return cls(
            product_ref=str(doc["product_ref"]),
            name=doc["name"],
            unit_price=Decimal(str(doc["unit_price"])),
            quantity=int(doc.get("quantity", 1)),
            mode=ItemMode(doc.get("mode", ItemMode.PURCHASE.value)),
            rental_unit=RentalUnit(unit) if unit else None,
            rental_duration=doc.get("rental_duration"),
            image=doc.get("image"),
        )


@dataclass(frozen=True)
class WishlistEntry:
    """Purchase-intent bookmark. No quantity or mode."""

    product_ref: str
    name: str
    unit_price: Decimal
    image: Optional[str] = None

    @classmethod
    def for_product(cls, product: Product) -> "WishlistEntry":
        return cls(product_ref=product.id, name=product.name, unit_price=product.price, image=product.image)

    def to_document(self) -> dict:
        return {
            "product_ref": self.product_ref,
            "name": self.name,
            "unit_price": money_str(self.unit_price),
            "image": self.image,
        }

    @classmethod
    def from_document(cls, doc: dict) -> "WishlistEntry":
        return cls(
            product_ref=str(doc["product_ref"]),
            name=doc["name"],
            unit_price=Decimal(str(doc["unit_price"])),
            image=doc.get("image"),
        )


@dataclass
class Cart:
    user_ref: str
    items: list = field(default_factory=list)

    def find(self, product_ref: str) -> Optional[CartEntry]:
        return next((e for e in self.items if e.product_ref == product_ref), None)

    def to_document(self) -> dict:
        return {"user_ref": self.user_ref, "items": [e.to_document() for e in self.items]}


@dataclass
class Wishlist:
    user_ref: str
    items: list = field(default_factory=list)

    def to_document(self) -> dict:
        return {"user_ref": self.user_ref, "items": [e.to_document() for e in self.items]}


def _load_product(store: StorePort, product_ref: str) -> Product:
    doc = store.find_by_id(PRODUCTS, product_ref)
    if doc is None:
        raise NotFoundError("PRODUCT_NOT_FOUND")
    return Product.from_document(doc)


def _check_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise ValidationError("INVALID_QUANTITY")
    return quantity


def _check_duration(duration) -> int:
    if isinstance(duration, bool) or not isinstance(duration, int) or duration < 1:
        raise ValidationError("INVALID_RENTAL_DURATION")
    return duration


class CartService:
    """Read-modify-write operations on a user's cart. Last write wins."""

    def __init__(self, store: StorePort):
        self.store = store

    def get(self, user_ref: str) -> Cart:
        doc = self.store.find_one(CARTS, {"user_ref": user_ref})
        if doc is None:
            return Cart(user_ref=user_ref)
        return Cart(user_ref=user_ref, items=[CartEntry.from_document(d) for d in doc.get("items", [])])

    def _save(self, cart: Cart) -> Cart:
        self.store.upsert_one(CARTS, {"user_ref": cart.user_ref}, {"items": [e.to_document() for e in cart.items]})
        return cart

    def upsert(self, user_ref: str, entry: CartEntry) -> Cart:
        """Add one unit of ``entry``'s product.

        An existing line for the same product gets its quantity bumped by
        one; otherwise the entry is appended with quantity one.
        """
        cart = self.get(user_ref)
        current = cart.find(entry.product_ref)
        if current is None:
            cart.items.append(replace(entry, quantity=1))
        else:
            cart.items = [replace(e, quantity=e.quantity + 1) if e is current else e for e in cart.items]
        return self._save(cart)

    def add_product(self, user_ref: str, product_ref: str) -> Cart:
        return self.upsert(user_ref, CartEntry.for_product(_load_product(self.store, product_ref)))

    def remove(self, user_ref: str, product_ref: str) -> Cart:
        """Drop the product's line. Removing an absent product is a no-op."""
        cart = self.get(user_ref)
        kept = [e for e in cart.items if e.product_ref != product_ref]
        if len(kept) == len(cart.items):
            return cart
        cart.items = kept
        return self._save(cart)

    def set_quantity(self, user_ref: str, product_ref: str, quantity: int) -> Cart:
        _check_quantity(quantity)
        cart = self.get(user_ref)
        current = cart.find(product_ref)
        if current is None:
            raise NotFoundError("CART_ITEM_NOT_FOUND")
        cart.items = [replace(e, quantity=quantity) if e is current else e for e in cart.items]
        return self._save(cart)

    def set_mode(
        self,
        user_ref: str,
        product_ref: str,
        mode: ItemMode,
        unit: Optional[RentalUnit] = None,
        duration: Optional[int] = None,
    ) -> Cart:
        """Switch a line between purchase and rental.

        Rental mode requires the product to be rentable at the chosen unit
        (daily by default); the duration defaults to one period.
        """
        mode = ItemMode(mode)
        cart = self.get(user_ref)
        current = cart.find(product_ref)
        if current is None:
            raise NotFoundError("CART_ITEM_NOT_FOUND")

        if mode is ItemMode.RENTAL:
            unit = RentalUnit(unit) if unit else (current.rental_unit or RentalUnit.DAILY)
            duration = _check_duration(duration if duration is not None else (current.rental_duration or 1))
            if _load_product(self.store, product_ref).rate_for(unit) <= ZERO:
                raise ValidationError("RENTAL_RATE_UNAVAILABLE")
            changed = replace(current, mode=mode, rental_unit=unit, rental_duration=duration)
        else:
            changed = replace(current, mode=mode, rental_unit=None, rental_duration=None)

        cart.items = [changed if e is current else e for e in cart.items]
        return self._save(cart)

    def clear(self, user_ref: str) -> None:
        self.store.delete_one(CARTS, {"user_ref": user_ref})

    def to_order_items(
        self,
        user_ref: str,
        rental_unit: Optional[RentalUnit] = None,
        rental_duration: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> list[LineItem]:
        """Freeze the cart into order line items.

        Name, price and rental rate are read from the catalog at this
        moment; this is the only place live prices are copied into an
        order. ``rental_unit``/``rental_duration`` override the per-line
        rental choice for every rental line.

        Raises:
            ValidationError: ``EMPTY_CART``, or ``RENTAL_RATE_UNAVAILABLE``
                when a rental line's unit has no rate.
            NotFoundError: ``PRODUCT_NOT_FOUND`` for a vanished product.
        """
        cart = self.get(user_ref)
        if not cart.items:
            raise ValidationError("EMPTY_CART")
        now = now or datetime.now(timezone.utc)

        items = []
        for entry in cart.items:
            product = _load_product(self.store, entry.product_ref)
            rental = None
            if entry.mode is ItemMode.RENTAL:
                unit = RentalUnit(rental_unit) if rental_unit else (entry.rental_unit or RentalUnit.DAILY)
                duration = _check_duration(rental_duration or entry.rental_duration or 1)
                rate = product.rate_for(unit)
                if rate <= ZERO:
                    raise ValidationError("RENTAL_RATE_UNAVAILABLE")
                rental = RentalDetails(unit=unit, rate=rate, duration=duration, return_due_at=now + unit.period * duration)
            items.append(
                LineItem(
                    product_ref=product.id,
                    name=product.name,
                    unit_price=product.price,
                    quantity=entry.quantity,
                    mode=entry.mode,
                    rental=rental,
                    image=product.image,
                )
            )
        return items


class WishlistService:
    """Deduplicated per-user wishlist."""

    def __init__(self, store: StorePort):
        self.store = store

    def get(self, user_ref: str) -> Wishlist:
        doc = self.store.find_one(WISHLISTS, {"user_ref": user_ref})
        if doc is None:
            return Wishlist(user_ref=user_ref)
        return Wishlist(user_ref=user_ref, items=[WishlistEntry.from_document(d) for d in doc.get("items", [])])

    def _save(self, wishlist: Wishlist) -> Wishlist:
        self.store.upsert_one(
            WISHLISTS, {"user_ref": wishlist.user_ref}, {"items": [e.to_document() for e in wishlist.items]}
        )
        return wishlist

    def upsert(self, user_ref: str, entry: WishlistEntry) -> Wishlist:
        """Append ``entry`` unless the product is already listed."""
        wishlist = self.get(user_ref)
        if any(e.product_ref == entry.product_ref for e in wishlist.items):
            return wishlist
        wishlist.items.append(entry)
        return self._save(wishlist)

    def add_product(self, user_ref: str, product_ref: str) -> Wishlist:
        return self.upsert(user_ref, WishlistEntry.for_product(_load_product(self.store, product_ref)))

    def remove(self, user_ref: str, product_ref: str) -> Wishlist:
        wishlist = self.get(user_ref)
        kept = [e for e in wishlist.items if e.product_ref != product_ref]
        if len(kept) == len(wishlist.items):
            return wishlist
        wishlist.items = kept
        return self._save(wishlist)

    def clear(self, user_ref: str) -> None:
        self.store.delete_one(WISHLISTS, {"user_ref": user_ref})
