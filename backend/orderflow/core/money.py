from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from orderflow.core.errors import ValidationError

CENTS = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value: Any, *, field: str = "amount") -> Decimal:
    """Coerce to a 2-place Decimal. Floats go through str() so 0.1 stays 0.10."""

    if isinstance(value, Decimal):
        d = value
    else:
        try:
            d = Decimal(str(value))
        except (InvalidOperation, TypeError, ValueError):
            raise ValidationError(f"{field} is not a valid decimal", {"field": field})
    if not d.is_finite():
        raise ValidationError(f"{field} must be finite", {"field": field})
    return d.quantize(CENTS, rounding=ROUND_HALF_UP)


def normalize_currency(value: Any) -> str:
    s = str(value or "").strip().upper()
    if len(s) != 3 or not s.isalpha():
        raise ValidationError("currency must be a 3-letter ISO code", {"currency": value})
    return s
