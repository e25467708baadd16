"""
Money helpers.

All amounts are persisted as integer cents and all tax rates as basis
points (1% == 100 bps). Terminals speak decimal currency units, so values
cross the API boundary through these helpers only.
"""

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

CENT = Decimal("0.01")


def to_cents(value: Decimal) -> int:
    """Decimal currency amount -> integer cents (half-up)."""
    return int((value.quantize(CENT, rounding=ROUND_HALF_UP) * 100).to_integral_value())


def to_bps(rate_percent: Decimal) -> int:
    """Percentage (e.g. 7.5) -> basis points (750), half-up."""
    return int((rate_percent * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def cents_to_amount(cents: int | None) -> float | None:
    """Integer cents -> currency units for JSON responses."""
    if cents is None:
        return None
    return float(Decimal(cents) / 100)


def apply_bps(amount_cents: int, bps: int) -> int:
    """amount * bps / 10000, nearest cent (half-up, symmetric)."""
    product = amount_cents * bps
    if product >= 0:
        return (product + 5000) // 10000
    return -((-product + 5000) // 10000)


def extend_cents(unit_cents: int, quantity: Decimal) -> int:
    """unit price x quantity, nearest cent (half-up)."""
    return int((Decimal(unit_cents) * quantity).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
