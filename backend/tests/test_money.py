"""
Money helper tests.

Pure functions, no database.
"""

from decimal import Decimal

from settlepos.services.money import (
    clamp,
    is_positive,
    is_settled,
    money_eq,
    money_str,
    non_negative,
    round2,
    sum_money,
    to_decimal,
)


def test_to_decimal_treats_blank_and_garbage_as_zero():
    assert to_decimal(None) == 0
    assert to_decimal("") == 0
    assert to_decimal("abc") == 0
    assert to_decimal("NaN") == 0
    assert to_decimal(float("inf")) == 0


def test_to_decimal_keeps_float_text():
    assert to_decimal(0.1) == Decimal("0.1")
    assert to_decimal(" 12.50 ") == Decimal("12.50")


def test_round2_is_half_up():
    assert round2("2.345") == Decimal("2.35")
    assert round2("2.344") == Decimal("2.34")
    assert round2("-1.005") == Decimal("-1.01")


def test_tolerances():
    assert money_eq("10.00", "10.01")
    assert not money_eq("10.00", "10.02")
    assert is_settled("0.01")
    assert not is_settled("0.02")
    assert not is_positive("0.01")
    assert is_positive("0.02")


def test_clamp_and_non_negative():
    assert clamp("350", 0, "300") == Decimal("300")
    assert clamp("-5", 0, "300") == Decimal("0")
    assert clamp("120", 0, "300") == Decimal("120")
    assert non_negative("-0.50") == 0
    assert non_negative("4.20") == Decimal("4.20")


def test_sum_money_rounds_each_addend():
    # 3 x 0.333 would be 1.00 unrounded; each addend rounds to 0.33 first
    assert sum_money(["0.333", "0.333", "0.333"]) == Decimal("0.99")


def test_money_str():
    assert money_str(None) is None
    assert money_str("5") == "5.00"
