# Overview: Fixed 2-decimal money helpers shared by every settlement path.

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any, Iterable

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

# Tolerance used whenever two money values are compared.
MONEY_EPS = Decimal("0.01")

# Tighter tolerance for "charged below allowed" checks.
PRICE_EPS = Decimal("0.000001")


def to_decimal(value: Any) -> Decimal:
    """None, blanks and non-finite input become 0."""
    if value is None:
        return Decimal(0)
    if isinstance(value, Decimal):
        return value if value.is_finite() else Decimal(0)
    if isinstance(value, bool):
        return Decimal(int(value))
    if isinstance(value, int):
        return Decimal(value)
    try:
        # str() keeps 0.1 as 0.1 instead of its binary expansion
        d = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return Decimal(0)
    return d if d.is_finite() else Decimal(0)


def round2(value: Any) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def money_eq(a: Any, b: Any, eps: Decimal = MONEY_EPS) -> bool:
    return abs(to_decimal(a) - to_decimal(b)) <= eps


def is_positive(value: Any, eps: Decimal = MONEY_EPS) -> bool:
    """True when value is meaningfully above zero (beyond rounding noise)."""
    return to_decimal(value) > eps


def is_settled(remaining: Any, eps: Decimal = MONEY_EPS) -> bool:
    return to_decimal(remaining) <= eps


def clamp(value: Any, lo: Any, hi: Any) -> Decimal:
    v = to_decimal(value)
    low = to_decimal(lo)
    high = to_decimal(hi)
    if v < low:
        return low
    if v > high:
        return high
    return v


def non_negative(value: Any) -> Decimal:
    v = to_decimal(value)
    return v if v > 0 else Decimal(0)


def sum_money(values: Iterable[Any]) -> Decimal:
    """Sum with every addend rounded first so totals never drift."""
    total = ZERO
    for v in values:
        total += round2(v)
    return round2(total)


def money_str(value: Any) -> str | None:
    if value is None:
        return None
    return str(round2(value))
