"""
Fixed-point money helpers.

All amounts are Decimals with an explicit scale of two places.
Values are quantized once, at the model boundary, instead of being
re-parsed at each arithmetic step.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated

from pydantic import AfterValidator

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value, *, rounding: str = ROUND_HALF_UP) -> Decimal:
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=rounding)


Money = Annotated[Decimal, AfterValidator(to_money)]
