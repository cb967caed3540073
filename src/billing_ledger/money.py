"""Money helpers: exact two-digit decimal amounts in the settlement currency."""

from __future__ import annotations

from collections.abc import Iterable
from decimal import ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value: Decimal | int | str) -> Decimal:
    """Quantize a value to cents, rounding half up."""
    if isinstance(value, float):
        raise TypeError("Money must not be built from float")
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def from_cents(cents: int | None) -> Decimal | None:
    """Convert Stripe minor units to a money amount."""
    if cents is None:
        return None
    return (Decimal(cents) / 100).quantize(CENT, rounding=ROUND_HALF_UP)


def money_sum(amounts: Iterable[Decimal]) -> Decimal:
    return sum(amounts, ZERO)


def format_decimal(amount: Decimal) -> str:
    """Format an amount for DATEV: two digits, comma as decimal separator."""
    return f"{to_money(amount):.2f}".replace(".", ",")
