"""Shared helpers: bounded decimals, guarded division and JSON parsing."""
from __future__ import annotations

import json
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

# Persisted ratio columns are Numeric(19, 4); values outside this range overflow.
DECIMAL_CAP = Decimal("1000000000")
FOUR_PLACES = Decimal("0.0001")
TWO_PLACES = Decimal("0.01")

_MISSING = object()


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


class BoundedDecimal(Decimal):
    """Decimal clamped to ``[-DECIMAL_CAP, DECIMAL_CAP]`` on construction.

    NaN becomes 0 and infinities become the bound carrying their sign, so a
    ``BoundedDecimal`` is always finite and always fits the persisted column.
    """

    def __new__(cls, value: Any = "0") -> BoundedDecimal:
        try:
            dec = value if isinstance(value, Decimal) else Decimal(str(value))
        except (InvalidOperation, ValueError):
            dec = Decimal(0)
        if dec.is_nan():
            dec = Decimal(0)
        elif dec.is_infinite():
            dec = DECIMAL_CAP.copy_sign(dec)
        elif dec > DECIMAL_CAP:
            dec = DECIMAL_CAP
        elif dec < -DECIMAL_CAP:
            dec = -DECIMAL_CAP
        return super().__new__(cls, dec)


def bounded(value: Decimal | None) -> BoundedDecimal | None:
    """Wrap *value* in a :class:`BoundedDecimal`, passing ``None`` through."""
    if value is None:
        return None
    return BoundedDecimal(value)


def quantize(value: Decimal, places: Decimal = FOUR_PLACES) -> Decimal:
    return value.quantize(places, rounding=ROUND_HALF_UP)


def safe_divide(numerator: Decimal | None, denominator: Decimal | None) -> Decimal | None:
    """Divide to 4 places, or ``None`` if an operand is missing or the denominator is zero."""
    if numerator is None or denominator is None or denominator == 0:
        return None
    quotient = numerator / denominator
    # Quantizing a huge quotient would exceed the decimal context precision.
    if abs(quotient) > DECIMAL_CAP:
        return DECIMAL_CAP.copy_sign(quotient)
    return quantize(quotient)


def to_float(value: Decimal | float | int | None, default: float | None = None) -> float | None:
    if value is None:
        return default
    return float(value)


def json_parse(value: str | None, default: Any = _MISSING) -> Any:
    """Safely parse a JSON string, returning *default* on failure.

    If no default is given, returns ``{}`` on parse error.
    """
    try:
        return json.loads(value or "")
    except (json.JSONDecodeError, TypeError):
        return {} if default is _MISSING else default


def to_json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False)
