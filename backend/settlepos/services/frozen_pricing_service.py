"""
Frozen Pricing Reader/Validator

WHY: Order headers cache subtotal and total-before-discount for list
screens, but the frozen lines are the settlement truth. This module
recomputes the totals from the lines only and reports drift. It never
writes anything.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Iterable

from ..validation import ValidationError
from .money import MONEY_EPS, ZERO, money_eq, round2, to_decimal


@dataclass(frozen=True)
class FrozenTotals:
    subtotal: Decimal
    total_before_discount: Decimal
    discount_total: Decimal
    header_subtotal: Decimal | None
    header_total_before_discount: Decimal | None
    complete: bool
    mismatch: bool
    detail: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "subtotal": str(self.subtotal),
            "total_before_discount": str(self.total_before_discount),
            "discount_total": str(self.discount_total),
            "header_subtotal": str(self.header_subtotal) if self.header_subtotal is not None else None,
            "header_total_before_discount": (
                str(self.header_total_before_discount) if self.header_total_before_discount is not None else None
            ),
            "complete": self.complete,
            "mismatch": self.mismatch,
            "detail": self.detail,
        }


def _get(line: Any, key: str):
    if isinstance(line, dict):
        return line.get(key)
    return getattr(line, key, None)


def has_frozen_line_totals(lines: Iterable[Any]) -> bool:
    lines = list(lines)
    return bool(lines) and all(_get(line, "line_total") is not None for line in lines)


def require_frozen_lines(lines: Iterable[Any]) -> list:
    """Refuse to settle or print while any line lacks a frozen total."""
    lines = list(lines)
    if not has_frozen_line_totals(lines):
        raise ValidationError("Totals are not frozen yet")
    return lines


def sum_line_totals(lines: Iterable[Any]) -> Decimal:
    return round2(sum((round2(_get(line, "line_total")) for line in lines), ZERO))


def read_frozen_totals(lines: Iterable[Any], header_subtotal=None, header_total_before_discount=None) -> FrozenTotals:
    """
    Recompute totals strictly from frozen lines.

    A line without a base price counts its charged price as the base, so a
    plain undiscounted line contributes the same to both totals.
    """
    lines = list(lines)
    subtotal = ZERO
    before = ZERO
    discount = ZERO
    for line in lines:
        qty = to_decimal(_get(line, "qty"))
        base = _get(line, "base_unit_price")
        if base is None:
            base = _get(line, "unit_price")
        subtotal += round2(_get(line, "line_total"))
        before += round2(qty * to_decimal(base))
        discount += round2(qty * to_decimal(_get(line, "discount_amount")))

    subtotal = round2(subtotal)
    before = round2(before)
    discount = round2(discount)

    hs = round2(header_subtotal) if header_subtotal is not None else None
    hb = round2(header_total_before_discount) if header_total_before_discount is not None else None

    detail = {}
    if hs is not None and not money_eq(hs, subtotal, MONEY_EPS):
        detail["subtotal"] = {"header": str(hs), "lines": str(subtotal), "diff": str(round2(hs - subtotal))}
    if hb is not None and not money_eq(hb, before, MONEY_EPS):
        detail["total_before_discount"] = {"header": str(hb), "lines": str(before), "diff": str(round2(hb - before))}

    return FrozenTotals(
        subtotal=subtotal,
        total_before_discount=before,
        discount_total=discount,
        header_subtotal=hs,
        header_total_before_discount=hb,
        complete=has_frozen_line_totals(lines),
        mismatch=bool(detail),
        detail=detail,
    )


def frozen_totals_for_order(order) -> FrozenTotals:
    return read_frozen_totals(order.items, order.subtotal, order.total_before_discount)
