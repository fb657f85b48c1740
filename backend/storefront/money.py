from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional

TWO_PLACES = Decimal("0.01")


def to_decimal(value, *, field: str = "amount") -> Decimal:
    """
    Coerce an incoming JSON value (str, int, float, Decimal) to a 2-place Decimal.

    Floats go through str() so 0.1 stays 0.10 rather than its binary expansion.
    Raises ValueError with the field name on garbage input.
    """
    if isinstance(value, Decimal):
        d = value
    elif isinstance(value, bool) or value is None:
        raise ValueError(f"{field} must be a number")
    else:
        try:
            d = Decimal(str(value))
        except (InvalidOperation, ValueError):
            raise ValueError(f"{field} must be a number") from None
    if not d.is_finite():
        raise ValueError(f"{field} must be a number")
    return d.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def money_str(value: Optional[Decimal]) -> Optional[str]:
    """Serialize a money column as a fixed 2-place string ("1200.00")."""
    if value is None:
        return None
    return str(Decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP))


def to_minor_units(amount: Decimal) -> int:
    """Major units to integer minor units (rupees -> paise)."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
