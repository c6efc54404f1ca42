"""
Frozen pricing reader tests.

Lines are plain dicts here; the reader accepts ORM rows the same way.
"""

from decimal import Decimal

import pytest

from settlepos.services.frozen_pricing_service import (
    frozen_totals_for_order,
    has_frozen_line_totals,
    read_frozen_totals,
    require_frozen_lines,
)
from settlepos.validation import ValidationError


LINES = [
    {"qty": "2", "unit_price": "90.00", "base_unit_price": "100.00", "discount_amount": "10.00", "line_total": "180.00"},
    {"qty": "1", "unit_price": "25.00", "base_unit_price": None, "discount_amount": None, "line_total": "25.00"},
]


def test_totals_come_from_lines_only():
    totals = read_frozen_totals(LINES)
    assert totals.subtotal == Decimal("205.00")
    assert totals.total_before_discount == Decimal("225.00")
    assert totals.discount_total == Decimal("20.00")
    assert totals.complete
    assert not totals.mismatch


def test_header_drift_is_reported_not_fixed():
    totals = read_frozen_totals(LINES, header_subtotal="210.00", header_total_before_discount="225.00")
    assert totals.mismatch
    assert totals.subtotal == Decimal("205.00")
    assert totals.detail["subtotal"] == {"header": "210.00", "lines": "205.00", "diff": "5.00"}
    assert "total_before_discount" not in totals.detail


def test_header_within_a_cent_is_not_drift():
    totals = read_frozen_totals(LINES, header_subtotal="205.01")
    assert not totals.mismatch


def test_missing_line_total_blocks_settlement():
    lines = LINES + [{"qty": "1", "unit_price": "10.00", "line_total": None}]
    assert not has_frozen_line_totals(lines)
    assert not has_frozen_line_totals([])
    with pytest.raises(ValidationError):
        require_frozen_lines(lines)


def test_order_totals_match_header(db_session, products, make_order):
    order = make_order((products["rice"], 1, "PACK"), (products["soap"], 3, "RETAIL"))
    totals = frozen_totals_for_order(order)
    assert totals.subtotal == Decimal("575.00")
    assert not totals.mismatch
