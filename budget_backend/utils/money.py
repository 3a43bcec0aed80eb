from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

FOUR_PLACES = Decimal("0.0001")


def to_money(value) -> Decimal:
    """Coerce DB aggregates (``None``, float, int, Decimal) to a 4-place Decimal."""
    if value is None:
        return Decimal("0").quantize(FOUR_PLACES)
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(FOUR_PLACES, rounding=ROUND_HALF_UP)
