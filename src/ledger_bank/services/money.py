from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from .errors import InvalidAmount

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
# largest value a Numeric(15, 2) column holds
MAX_AMOUNT = Decimal("9999999999999.99")


def to_decimal(value: Any) -> Decimal:
    """
    Normalize numeric values (including SQL results) to Decimal.
    None counts as zero.
    """
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round2(value: Any) -> Decimal:
    """Round to cents, half-up."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def parse_amount(value: Any) -> Decimal:
    """
    Validate a caller-supplied amount and round it to cents.
    Raises InvalidAmount for missing, non-numeric, non-finite, non-positive or
    out-of-range values.
    """
    if value is None or isinstance(value, bool):
        raise InvalidAmount()
    try:
        amount = to_decimal(value)
        if not amount.is_finite():
            raise InvalidAmount()
        amount = round2(amount)
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidAmount()
    if amount <= 0:
        raise InvalidAmount()
    if amount > MAX_AMOUNT:
        raise InvalidAmount(f"Amount cannot exceed {MAX_AMOUNT}")
    return amount


def format_money(amount: Decimal) -> str:
    return f"₹{round2(amount):,.2f}"
