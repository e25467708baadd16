"""
Quantity helpers.

Stock and line quantities may be fractional (goods sold by weight or
length). They are Decimal in Python and Numeric(14, 3) in the database,
and leave the API as plain JSON numbers.
"""

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

QUANTITY_STEP = Decimal("0.001")
ZERO = Decimal("0.000")


def to_quantity(value) -> Decimal:
    """int, float, str or Decimal -> Decimal with three places (half-up)."""
    if isinstance(value, float):
        value = str(value)
    return Decimal(value).quantize(QUANTITY_STEP, rounding=ROUND_HALF_UP)


def quantity_to_number(quantity) -> int | float | None:
    """Whole quantities as int, fractional ones as float, for JSON bodies."""
    if quantity is None:
        return None
    quantity = to_quantity(quantity)
    if quantity == quantity.to_integral_value():
        return int(quantity)
    return float(quantity)
