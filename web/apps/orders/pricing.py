"""Order pricing engine.

Pure functions that turn line items plus shipping, tax and an offer into
the money fields of an order. Nothing here touches storage, so the same
inputs always give the same totals.

Computation keeps full ``Decimal`` precision; use :meth:`Totals.rounded`
when presenting the figures.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from .domain import LineItem, Offer, OfferType
from .money import ZERO, percent_of, round_money


@dataclass(frozen=True)
class Totals:
    """Money fields produced by the engine."""

    subtotal: Decimal
    tax: Decimal
    shipping_fee: Decimal
    discount_amount: Decimal
    total: Decimal

    @property
    def base_total(self) -> Decimal:
        return self.subtotal + self.tax + self.shipping_fee

    def rounded(self) -> "Totals":
        return Totals(
            subtotal=round_money(self.subtotal),
            tax=round_money(self.tax),
            shipping_fee=round_money(self.shipping_fee),
            discount_amount=round_money(self.discount_amount),
            total=round_money(self.total),
        )


def subtotal_of(items: Iterable[LineItem]) -> Decimal:
    """Sum of line totals; rentals bill ``rate * duration * quantity``."""
    return sum((item.line_total for item in items), ZERO)


def tax_for(subtotal: Decimal, rate: Decimal) -> Decimal:
    return subtotal * rate


def discount_for(offer: Offer, base_total: Decimal) -> Decimal:
    """Discount an offer grants on ``base_total``.

    Fixed offers never discount more than the base total. Percentage
    values are expected in ``[0, 100]``; callers validate that with
    :meth:`Offer.validate` before pricing.
    """
    if offer.type is OfferType.FIXED:
        return min(offer.value, base_total)
    if offer.type is OfferType.PERCENTAGE:
        return percent_of(base_total, offer.value)
    return ZERO


def totals_from_subtotal(subtotal: Decimal, shipping_fee: Decimal, tax_amount: Decimal, offer: Offer) -> Totals:
    """Price an order whose subtotal is already known.

    Admin edits use this path: items are never re-priced after checkout,
    only tax, shipping and the offer move.
    """
    base_total = subtotal + tax_amount + shipping_fee
    discount = discount_for(offer, base_total)
    return Totals(
        subtotal=subtotal,
        tax=tax_amount,
        shipping_fee=shipping_fee,
        discount_amount=discount,
        total=max(ZERO, base_total - discount),
    )


def compute_totals(
    items: Iterable[LineItem], shipping_fee: Decimal, tax_amount: Decimal, offer: Offer | None = None
) -> Totals:
    """Compute subtotal, tax, shipping, discount and total for ``items``.

    Args:
        items: Line items to price.
        shipping_fee: Shipping amount, non-negative.
        tax_amount: Tax amount (not a rate), non-negative.
        offer: Optional discount; ``None`` behaves like a ``none`` offer.

    Returns:
        Totals: Full-precision money fields, ``total`` never below zero.
    """
    return totals_from_subtotal(subtotal_of(items), shipping_fee, tax_amount, offer or Offer())
