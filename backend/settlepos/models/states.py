"""
Closed status vocabularies and their legal transitions.

WHY: Order, shift, variance and charge rows are all state machines. Keeping
the allowed moves in one table per machine means a service can only move a
row along an edge listed here; anything else is a ConflictError.
"""

from __future__ import annotations

import enum

from ..validation import ConflictError


class OrderStatus(str, enum.Enum):
    UNPAID = "UNPAID"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    PAID = "PAID"
    CANCELLED = "CANCELLED"


class OrderChannel(str, enum.Enum):
    COUNTER = "COUNTER"
    DELIVERY = "DELIVERY"


class PaymentMethod(str, enum.Enum):
    CASH = "CASH"
    INTERNAL_CREDIT = "INTERNAL_CREDIT"
    CARD = "CARD"
    EWALLET = "EWALLET"


class UnitKind(str, enum.Enum):
    RETAIL = "RETAIL"
    PACK = "PACK"


class PricePolicy(str, enum.Enum):
    BASE = "BASE"
    PER_ITEM = "PER_ITEM"


class PriceMode(str, enum.Enum):
    FIXED_PRICE = "FIXED_PRICE"
    FIXED_DISCOUNT = "FIXED_DISCOUNT"
    PERCENT_DISCOUNT = "PERCENT_DISCOUNT"


class ReceiptKind(str, enum.Enum):
    PARENT = "PARENT"   # pre-planned order carried on a run
    ROAD = "ROAD"       # sold on the road, order created at check-in


class VarianceStatus(str, enum.Enum):
    OPEN = "OPEN"
    MANAGER_APPROVED = "MANAGER_APPROVED"
    WAIVED = "WAIVED"
    RIDER_ACCEPTED = "RIDER_ACCEPTED"
    CLOSED = "CLOSED"


class VarianceResolution(str, enum.Enum):
    CHARGE_RIDER = "CHARGE_RIDER"
    WAIVE = "WAIVE"
    INFO_ONLY = "INFO_ONLY"


class ChargeStatus(str, enum.Enum):
    OPEN = "OPEN"
    PARTIALLY_SETTLED = "PARTIALLY_SETTLED"
    SETTLED = "SETTLED"
    WAIVED = "WAIVED"


class ChargePaymentMethod(str, enum.Enum):
    CASH = "CASH"
    PAYROLL_DEDUCTION = "PAYROLL_DEDUCTION"
    ADJUSTMENT = "ADJUSTMENT"


class ShiftStatus(str, enum.Enum):
    PENDING_ACCEPT = "PENDING_ACCEPT"
    OPEN = "OPEN"
    OPENING_DISPUTED = "OPENING_DISPUTED"
    SUBMITTED = "SUBMITTED"
    FINAL_CLOSED = "FINAL_CLOSED"


class DrawerTxnType(str, enum.Enum):
    CASH_IN = "CASH_IN"
    CASH_OUT = "CASH_OUT"
    DROP = "DROP"


class CashierVarianceResolution(str, enum.Enum):
    CHARGE_CASHIER = "CHARGE_CASHIER"
    INFO_ONLY = "INFO_ONLY"
    WAIVE = "WAIVE"


class CashierVarianceStatus(str, enum.Enum):
    OPEN = "OPEN"
    MANAGER_APPROVED = "MANAGER_APPROVED"
    WAIVED = "WAIVED"
    CLOSED = "CLOSED"


# =============================================================================
# TRANSITION TABLES
# =============================================================================

ORDER_TRANSITIONS = {
    OrderStatus.UNPAID: {OrderStatus.PARTIALLY_PAID, OrderStatus.PAID, OrderStatus.CANCELLED},
    OrderStatus.PARTIALLY_PAID: {OrderStatus.PARTIALLY_PAID, OrderStatus.PAID},
    OrderStatus.PAID: set(),
    OrderStatus.CANCELLED: set(),
}

SETTLEABLE_ORDER_STATUSES = (OrderStatus.UNPAID, OrderStatus.PARTIALLY_PAID)

SHIFT_TRANSITIONS = {
    ShiftStatus.PENDING_ACCEPT: {ShiftStatus.PENDING_ACCEPT, ShiftStatus.OPEN, ShiftStatus.OPENING_DISPUTED},
    ShiftStatus.OPENING_DISPUTED: {ShiftStatus.PENDING_ACCEPT},
    ShiftStatus.OPEN: {ShiftStatus.SUBMITTED},
    ShiftStatus.SUBMITTED: {ShiftStatus.FINAL_CLOSED},
    ShiftStatus.FINAL_CLOSED: set(),
}

# Shifts that still block opening another one for the same cashier
ACTIVE_SHIFT_STATUSES = (
    ShiftStatus.PENDING_ACCEPT,
    ShiftStatus.OPEN,
    ShiftStatus.OPENING_DISPUTED,
    ShiftStatus.SUBMITTED,
)

# RIDER_ACCEPTED and WAIVED end the manager/rider conversation; CLOSED is
# the cashier's archival step once the run is finalised.
VARIANCE_TRANSITIONS = {
    VarianceStatus.OPEN: {VarianceStatus.MANAGER_APPROVED, VarianceStatus.WAIVED},
    VarianceStatus.MANAGER_APPROVED: {
        VarianceStatus.MANAGER_APPROVED,
        VarianceStatus.WAIVED,
        VarianceStatus.RIDER_ACCEPTED,
        VarianceStatus.CLOSED,
    },
    VarianceStatus.WAIVED: {VarianceStatus.CLOSED},
    VarianceStatus.RIDER_ACCEPTED: {VarianceStatus.CLOSED},
    VarianceStatus.CLOSED: set(),
}

CHARGE_TRANSITIONS = {
    ChargeStatus.OPEN: {ChargeStatus.OPEN, ChargeStatus.PARTIALLY_SETTLED, ChargeStatus.SETTLED, ChargeStatus.WAIVED},
    ChargeStatus.PARTIALLY_SETTLED: {ChargeStatus.PARTIALLY_SETTLED, ChargeStatus.SETTLED, ChargeStatus.WAIVED},
    ChargeStatus.WAIVED: {ChargeStatus.OPEN},
    ChargeStatus.SETTLED: set(),
}


def can_transition(table: dict, current, target) -> bool:
    return target in table.get(current, set())


def assert_transition(table: dict, current, target, entity: str) -> None:
    """Raise ConflictError unless current -> target is a listed edge."""
    if not can_transition(table, current, target):
        cur = getattr(current, "value", current)
        tgt = getattr(target, "value", target)
        raise ConflictError(
            f"{entity} cannot move from {cur} to {tgt}",
            details={"entity": entity, "from": cur, "to": tgt},
        )
