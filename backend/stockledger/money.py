# Overview: Decimal helpers for monetary columns (two decimal places, half-up).

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Optional

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value) -> Decimal:
    """Coerce int/str/float/Decimal to a Decimal rounded to cents."""
    if value is None:
        return ZERO
    if isinstance(value, float):
        value = repr(value)
    try:
        return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)
    except (InvalidOperation, TypeError, ValueError):
        raise ValueError(f"invalid monetary amount: {value!r}")


def money_str(value: Optional[Decimal]) -> Optional[str]:
    """JSON form of a monetary value ("13.33"); None stays None."""
    if value is None:
        return None
    return str(to_money(value))
