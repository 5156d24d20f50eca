"""
Domain: money helpers (pure).

All amounts are Decimal and quantized to cents with ROUND_HALF_UP, matching how
the storefront displays prices. Floats are never accepted.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Union

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

MoneyLike = Union[Decimal, int, str]


def to_money(value: MoneyLike) -> Decimal:
    """Convert to a cent-quantized Decimal."""

    if isinstance(value, float):
        raise TypeError("Monetary amounts must not be floats; use Decimal or str")
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def require_non_negative(name: str, value: Decimal) -> None:
    if value < 0:
        raise ValueError(f"{name} must be >= 0")


def sum_money(values: Iterable[Decimal]) -> Decimal:
    total = ZERO
    for value in values:
        total += value
    return to_money(total)
