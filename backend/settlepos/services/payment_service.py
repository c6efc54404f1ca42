"""
Settlement Payment Truth

WHY: Several screens ask "how much has this order really been paid, and in
what form". Cash in the drawer and non-cash rider-shortage bridges must
never be mixed up, so every sum goes through these helpers.

DESIGN PRINCIPLES:
- Payments are immutable; sums ignore non-positive rows
- Bridge entries are recognised by their reserved ref_no prefix
- Helpers accept ORM rows or plain dicts so the pure bridge math can be
  tested without a database
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Iterable

from ..models.states import PaymentMethod
from .money import ZERO, round2, to_decimal

RIDER_SHORTAGE_REF = "RIDER_SHORTAGE"
RIDER_SHORTAGE_PREFIX = "RIDER-SHORTAGE"
MAIN_DELIVERY_REF = "MAIN-DELIVERY"


def _get(payment: Any, key: str):
    if isinstance(payment, dict):
        return payment.get(key)
    return getattr(payment, key, None)


def _method(payment: Any) -> str:
    method = _get(payment, "method")
    return getattr(method, "value", method) or ""


def _amount(payment: Any) -> Decimal:
    return to_decimal(_get(payment, "amount"))


def rider_shortage_ref(receipt_id: int) -> str:
    """Idempotency key for the one bridge allowed per run receipt."""
    return f"{RIDER_SHORTAGE_PREFIX}:RR:{receipt_id}"


def is_rider_shortage_ref(ref_no: str | None) -> bool:
    ref = (ref_no or "").strip().upper()
    return ref == RIDER_SHORTAGE_REF or ref.startswith(RIDER_SHORTAGE_PREFIX)


def is_cash_payment(payment: Any) -> bool:
    return _method(payment) == PaymentMethod.CASH.value


def is_shortage_bridge(payment: Any) -> bool:
    return _method(payment) == PaymentMethod.INTERNAL_CREDIT.value and is_rider_shortage_ref(_get(payment, "ref_no"))


def sum_cash_payments(payments: Iterable[Any]) -> Decimal:
    total = ZERO
    for p in payments:
        amt = _amount(p)
        if amt > 0 and is_cash_payment(p):
            total += amt
    return round2(total)


def sum_shortage_bridge_payments(payments: Iterable[Any]) -> Decimal:
    total = ZERO
    for p in payments:
        amt = _amount(p)
        if amt > 0 and is_shortage_bridge(p):
            total += amt
    return round2(total)


def sum_settlement_credits(payments: Iterable[Any]) -> Decimal:
    """Everything that settles the customer's balance: cash plus bridges."""
    payments = list(payments)
    return round2(sum_cash_payments(payments) + sum_shortage_bridge_payments(payments))


def sum_all_payments(payments: Iterable[Any]) -> Decimal:
    total = ZERO
    for p in payments:
        amt = _amount(p)
        if amt > 0:
            total += amt
    return round2(total)
