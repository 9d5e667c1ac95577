"""Decimal helpers for currency and percentage math.

All money in the orders core is a ``decimal.Decimal``. Values keep their
full precision while they flow through pricing and edits; they are only
rounded to cents when presented (API output, notifications).
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from .errors import ValidationError

ZERO = Decimal("0")
HUNDRED = Decimal("100")
CENT = Decimal("0.01")
# Largest amount an order money column holds (20 digits, 8 of them decimal).
MAX_AMOUNT = Decimal("999999999999")


def to_money(value, code: str = "INVALID_AMOUNT") -> Decimal:
    """Coerce ``value`` to a finite Decimal.

    Accepts Decimal, int, float and numeric strings. Floats go through
    ``str`` so ``0.1`` becomes ``Decimal("0.1")`` rather than its binary
    expansion.

    Args:
        value: Raw numeric input.
        code: Error code raised when the value is not a finite number.

    Returns:
        Decimal: The parsed amount.

    Raises:
        ValidationError: If the value is missing, boolean, NaN or infinite.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(code)
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise ValidationError(code)
    if not amount.is_finite():
        raise ValidationError(code)
    return amount


def non_negative(value, code: str) -> Decimal:
    """Parse ``value`` with :func:`to_money`, rejecting negatives and
    anything above ``MAX_AMOUNT``."""
    amount = to_money(value, code)
    if amount < ZERO or amount > MAX_AMOUNT:
        raise ValidationError(code)
    return amount


def check_storable(amount: Decimal, code: str = "AMOUNT_TOO_LARGE") -> Decimal:
    """Reject computed amounts the order store cannot hold."""
    if amount > MAX_AMOUNT:
        raise ValidationError(code)
    return amount


def round_money(amount: Decimal) -> Decimal:
    """Round to cents, half up. Presentation only."""
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def percent_of(amount: Decimal, percent: Decimal) -> Decimal:
    return amount * (percent / HUNDRED)


def format_money(amount: Decimal) -> str:
    return f"${round_money(amount):,.2f}"


def money_str(amount: Decimal) -> str:
    """Serialize an amount for document storage without losing precision."""
    return str(amount)
