"""Decimal money helpers. Amounts are two-decimal Decimals; arithmetic is done in cents."""
from decimal import ROUND_HALF_UP, Decimal
from typing import Union

CENT = Decimal("0.01")

Number = Union[Decimal, int, str]


def as_decimal(value: Number) -> Decimal:
    # str() so a float never contributes its binary expansion
    return value if isinstance(value, Decimal) else Decimal(str(value))


def round_half_up(value: Number, places: int = 2) -> Decimal:
    return as_decimal(value).quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


def to_cents(value: Number) -> int:
    return int(round_half_up(value) * 100)


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT)


def sign(value: Number) -> int:
    value = as_decimal(value)
    return (value > 0) - (value < 0)
