"""
Processing-fee policy for transfers.

Internal transfers are free. External transfers pay 0.5% of the amount
with a floor of 10 currency units.
"""

from decimal import Decimal

from .money import ZERO, round2

EXTERNAL_FEE_RATE = Decimal("0.005")
EXTERNAL_FEE_MINIMUM = Decimal("10.00")


def compute_fee(amount: Decimal, is_internal: bool) -> Decimal:
    if is_internal:
        return ZERO
    return max(EXTERNAL_FEE_MINIMUM, round2(round2(amount) * EXTERNAL_FEE_RATE))


def total_debit(amount: Decimal, fee: Decimal) -> Decimal:
    return round2(round2(amount) + round2(fee))
