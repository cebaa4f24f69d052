"""Decimal helpers for currency amounts stored as Numeric(12, 2)."""

from decimal import ROUND_HALF_UP, Decimal
from typing import Union

CENT = Decimal("0.01")

Number = Union[Decimal, int, str]


def to_money(value: Number) -> Decimal:
    """Coerce to Decimal and round to the smallest currency unit (half up)."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def percent_of(amount: Number, percentage: Number) -> Decimal:
    return to_money(Decimal(amount) * Decimal(percentage) / Decimal(100))
