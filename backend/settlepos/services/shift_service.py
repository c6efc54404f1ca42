"""
Cashier Shift and Drawer Reconciliation

WHY: Every peso a cashier takes in lands in one physical drawer. The shift
is the accountability window for that drawer: a manager hands over a float,
the cashier verifies it, sells, counts at close, and the manager audits.

DESIGN PRINCIPLES:
- One active shift per cashier
- Money actions are only accepted while the shift is OPEN
- Expected drawer balance is recomputed from immutable rows every time,
  never cached
- Withdrawals are checked against that balance inside a serializable
  transaction so two concurrent withdrawals cannot overdraw the drawer
- Drawer rows are append-only
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy import func

from ..extensions import db
from ..models import (
    CashDrawerTxn,
    CashierCharge,
    CashierShift,
    CashierShiftVariance,
    Customer,
    CustomerArPayment,
    Payment,
)
from ..models.states import (
    ACTIVE_SHIFT_STATUSES,
    SHIFT_TRANSITIONS,
    CashierVarianceResolution,
    CashierVarianceStatus,
    ChargeStatus,
    DrawerTxnType,
    PaymentMethod,
    ShiftStatus,
    assert_transition,
)
from ..time_utils import to_utc_z, utcnow
from ..validation import ConflictError, NotFoundError, ValidationError
from .concurrency import get_or_create, lock_for_update, run_in_transaction
from .money import MONEY_EPS, ZERO, round2, to_decimal

# Peso bills and coins accepted in a closing count
DENOMS = (
    Decimal("1000"), Decimal("500"), Decimal("200"), Decimal("100"), Decimal("50"),
    Decimal("20"), Decimal("10"), Decimal("5"), Decimal("1"), Decimal("0.25"),
)

# Withdrawal tolerance against the recomputed balance
WITHDRAW_EPS = Decimal("0.005")


class ShiftError(ConflictError):
    """Raised when the shift is not in a state that allows the action."""


@dataclass(frozen=True)
class DrawerSnapshot:
    shift_id: int
    opening_float: Decimal
    cash_sales_in: Decimal
    ar_cash_in: Decimal
    deposits: Decimal
    withdrawals: Decimal

    @property
    def expected(self) -> Decimal:
        return round2(
            self.opening_float + self.cash_sales_in + self.ar_cash_in + self.deposits - self.withdrawals
        )

    def to_dict(self) -> dict:
        return {
            "shift_id": self.shift_id,
            "opening_float": str(self.opening_float),
            "cash_sales_in": str(self.cash_sales_in),
            "ar_cash_in": str(self.ar_cash_in),
            "deposits": str(self.deposits),
            "withdrawals": str(self.withdrawals),
            "expected": str(self.expected),
        }


# =============================================================================
# LOOKUPS
# =============================================================================

def _get_shift(shift_id: int, *, for_update: bool = False) -> CashierShift:
    q = db.session.query(CashierShift).filter_by(id=shift_id)
    if for_update:
        q = lock_for_update(q)
    shift = q.first()
    if shift is None:
        raise NotFoundError("Shift not found")
    return shift


def _ensure_owner(shift: CashierShift, cashier_id: int) -> None:
    if shift.cashier_id != cashier_id:
        raise ShiftError("Shift belongs to another cashier", details={"shift_id": shift.id})


def get_active_shift(cashier_id: int) -> CashierShift | None:
    return (
        db.session.query(CashierShift)
        .filter(CashierShift.cashier_id == cashier_id, CashierShift.status.in_(ACTIVE_SHIFT_STATUSES))
        .order_by(CashierShift.opened_at.desc(), CashierShift.id.desc())
        .first()
    )


def get_writable_shift(cashier_id: int, shift_id: int | None = None) -> CashierShift | None:
    """The cashier's OPEN shift (optionally a specific one), or None."""
    q = db.session.query(CashierShift).filter(
        CashierShift.cashier_id == cashier_id,
        CashierShift.status == ShiftStatus.OPEN,
    )
    if shift_id is not None:
        q = q.filter(CashierShift.id == shift_id)
    return q.order_by(CashierShift.id.desc()).first()


def require_writable_shift(shift_id: int | None, cashier_id: int) -> CashierShift:
    """Gate for every money action: the shift must be the cashier's and OPEN."""
    if shift_id is None:
        raise ShiftError("Open a cashier shift first")
    shift = _get_shift(shift_id)
    _ensure_owner(shift, cashier_id)
    if shift.status != ShiftStatus.OPEN:
        raise ShiftError(
            "Drawer is locked. Shift is not open for cash actions.",
            details={"shift_id": shift.id, "status": shift.status.value},
        )
    return shift


def list_shifts(status: ShiftStatus | None = None, cashier_id: int | None = None, limit: int = 50) -> list[CashierShift]:
    q = db.session.query(CashierShift)
    if status is not None:
        q = q.filter(CashierShift.status == status)
    if cashier_id is not None:
        q = q.filter(CashierShift.cashier_id == cashier_id)
    return q.order_by(CashierShift.opened_at.desc(), CashierShift.id.desc()).limit(limit).all()


# =============================================================================
# OPENING
# =============================================================================

def open_shift(
    cashier_id: int,
    opening_float,
    manager_id: int,
    device_id: str | None = None,
) -> tuple[CashierShift, bool]:
    """
    Manager hands a float to a cashier.

    Returns (shift, created). If the cashier already has an active shift it
    is returned unchanged with created=False.
    """
    opening_float = round2(opening_float)
    if opening_float < 0:
        raise ValidationError("opening_float must be >= 0")

    def _op():
        existing = get_active_shift(cashier_id)
        if existing is not None:
            return existing, False
        shift = CashierShift(
            cashier_id=cashier_id,
            device_id=device_id,
            opened_by_manager_id=manager_id,
            opening_float=opening_float,
            status=ShiftStatus.PENDING_ACCEPT,
            opened_at=utcnow(),
        )
        db.session.add(shift)
        db.session.flush()
        return shift, True

    return run_in_transaction(_op, serializable=True)


def accept_opening(shift_id: int, cashier_id: int, counted) -> CashierShift:
    """Cashier confirms the float. Outside PENDING_ACCEPT this is a no-op."""
    counted = round2(counted)
    if counted < 0:
        raise ValidationError("counted must be >= 0")

    def _op():
        shift = _get_shift(shift_id, for_update=True)
        _ensure_owner(shift, cashier_id)
        if shift.status != ShiftStatus.PENDING_ACCEPT:
            return shift
        assert_transition(SHIFT_TRANSITIONS, shift.status, ShiftStatus.OPEN, "Shift")
        shift.opening_counted = counted
        shift.opening_verified_at = utcnow()
        shift.opening_verified_by_id = cashier_id
        shift.opening_dispute_note = None
        shift.status = ShiftStatus.OPEN
        return shift

    return run_in_transaction(_op, serializable=True)


def dispute_opening(shift_id: int, cashier_id: int, counted, note: str | None) -> CashierShift:
    """Cashier disagrees with the float; the drawer stays locked until resent."""
    counted = round2(counted)
    if counted < 0:
        raise ValidationError("counted must be >= 0")
    note = (note or "").strip()
    if not note:
        raise ValidationError("A note is required when disputing the opening float")

    def _op():
        shift = _get_shift(shift_id, for_update=True)
        _ensure_owner(shift, cashier_id)
        if shift.status != ShiftStatus.PENDING_ACCEPT:
            return shift
        assert_transition(SHIFT_TRANSITIONS, shift.status, ShiftStatus.OPENING_DISPUTED, "Shift")
        shift.opening_counted = counted
        shift.opening_verified_at = utcnow()
        shift.opening_verified_by_id = cashier_id
        shift.opening_dispute_note = note
        shift.status = ShiftStatus.OPENING_DISPUTED
        return shift

    return run_in_transaction(_op, serializable=True)


def resend_opening(shift_id: int, manager_id: int, opening_float=None) -> CashierShift:
    """Manager corrects (or re-confirms) the float and asks the cashier again."""
    new_float = None if opening_float is None else round2(opening_float)
    if new_float is not None and new_float < 0:
        raise ValidationError("opening_float must be >= 0")

    def _op():
        shift = _get_shift(shift_id, for_update=True)
        assert_transition(SHIFT_TRANSITIONS, shift.status, ShiftStatus.PENDING_ACCEPT, "Shift")
        if new_float is not None:
            shift.opening_float = new_float
        shift.opened_by_manager_id = manager_id
        shift.opening_counted = None
        shift.opening_verified_at = None
        shift.opening_verified_by_id = None
        shift.opening_dispute_note = None
        shift.status = ShiftStatus.PENDING_ACCEPT
        return shift

    return run_in_transaction(_op, serializable=True)


# =============================================================================
# DRAWER
# =============================================================================

def drawer_snapshot(shift_id: int) -> DrawerSnapshot:
    """Expected drawer cash recomputed from payments and drawer rows."""
    shift = _get_shift(shift_id)

    tendered, change = (
        db.session.query(
            func.coalesce(func.sum(func.coalesce(Payment.tendered, Payment.amount)), 0),
            func.coalesce(func.sum(func.coalesce(Payment.change, 0)), 0),
        )
        .filter(Payment.shift_id == shift_id, Payment.method == PaymentMethod.CASH)
        .one()
    )

    ar_in = (
        db.session.query(func.coalesce(func.sum(CustomerArPayment.amount), 0))
        .filter(CustomerArPayment.shift_id == shift_id)
        .scalar()
    )

    by_type = dict(
        db.session.query(CashDrawerTxn.type, func.coalesce(func.sum(CashDrawerTxn.amount), 0))
        .filter(CashDrawerTxn.shift_id == shift_id)
        .group_by(CashDrawerTxn.type)
        .all()
    )

    return DrawerSnapshot(
        shift_id=shift.id,
        opening_float=round2(shift.opening_float),
        cash_sales_in=round2(to_decimal(tendered) - to_decimal(change)),
        ar_cash_in=round2(ar_in),
        deposits=round2(by_type.get(DrawerTxnType.CASH_IN, 0)),
        withdrawals=round2(
            to_decimal(by_type.get(DrawerTxnType.CASH_OUT, 0)) + to_decimal(by_type.get(DrawerTxnType.DROP, 0))
        ),
    )


def record_drawer_txn(
    shift_id: int,
    cashier_id: int,
    txn_type: DrawerTxnType,
    amount,
    note: str | None = None,
) -> CashDrawerTxn:
    """
    Append a deposit, withdrawal or drop.

    Deposits are unrestricted. CASH_OUT and DROP are refused when they
    exceed the expected balance at the instant of posting.
    """
    amount = round2(amount)
    if amount <= 0:
        raise ValidationError("amount must be > 0")

    def _op():
        require_writable_shift(shift_id, cashier_id)
        if txn_type in (DrawerTxnType.CASH_OUT, DrawerTxnType.DROP):
            snapshot = drawer_snapshot(shift_id)
            if amount > snapshot.expected + WITHDRAW_EPS:
                raise ValidationError(
                    "Withdrawal exceeds drawer balance",
                    details={"requested": str(amount), "expected": str(snapshot.expected)},
                )
        txn = CashDrawerTxn(
            shift_id=shift_id,
            type=txn_type,
            amount=amount,
            note=(note or "").strip() or None,
            created_by_id=cashier_id,
        )
        db.session.add(txn)
        db.session.flush()
        return txn

    return run_in_transaction(_op, serializable=True)


def record_ar_payment(customer_id: int, amount, shift_id: int, cashier_id: int, note: str | None = None) -> CustomerArPayment:
    """Standalone cash received against a customer's balance."""
    amount = round2(amount)
    if amount <= 0:
        raise ValidationError("amount must be > 0")

    def _op():
        require_writable_shift(shift_id, cashier_id)
        if db.session.get(Customer, customer_id) is None:
            raise NotFoundError("Customer not found")
        row = CustomerArPayment(
            customer_id=customer_id,
            shift_id=shift_id,
            cashier_id=cashier_id,
            amount=amount,
            note=(note or "").strip() or None,
        )
        db.session.add(row)
        db.session.flush()
        return row

    return run_in_transaction(_op, serializable=True)


# =============================================================================
# CLOSING
# =============================================================================

def total_from_denoms(denoms: dict) -> Decimal:
    """
    Sum a denomination breakdown.

    Accepts {"bills": {"1000": 2}, "coins": {"0.25": 4}} or a flat
    {"1000": 2, "0.25": 4}. Counts must be whole and non-negative.
    """
    if not isinstance(denoms, dict):
        raise ValidationError("denoms must be an object")
    flat: dict = {}
    nested = {k: v for k, v in denoms.items() if k in ("bills", "coins")}
    if nested:
        for group in nested.values():
            if not isinstance(group, dict):
                raise ValidationError("denoms groups must be objects")
            flat.update(group)
    else:
        flat = denoms

    total = ZERO
    for key, count in flat.items():
        face = to_decimal(key)
        if face not in DENOMS:
            raise ValidationError(f"Unknown denomination: {key}")
        if isinstance(count, bool) or not isinstance(count, int) or count < 0:
            raise ValidationError(f"Count for {key} must be a whole number >= 0")
        total += face * count
    return round2(total)


def submit_closing_count(
    shift_id: int,
    cashier_id: int,
    counted=None,
    denoms: dict | None = None,
    notes: str | None = None,
) -> tuple[CashierShift, DrawerSnapshot]:
    """
    Cashier counts the drawer and locks it.

    The difference against the expected balance is returned for display
    only; resolving it is the manager's job at final close.
    """
    if denoms:
        counted = total_from_denoms(denoms)
    if counted is None:
        raise ValidationError("counted is required")
    counted = round2(counted)
    if counted < 0:
        raise ValidationError("counted must be >= 0")

    def _op():
        shift = _get_shift(shift_id, for_update=True)
        _ensure_owner(shift, cashier_id)
        if shift.status == ShiftStatus.SUBMITTED:
            raise ShiftError("Shift already submitted", details={"shift_id": shift.id})
        assert_transition(SHIFT_TRANSITIONS, shift.status, ShiftStatus.SUBMITTED, "Shift")
        shift.closing_total = counted
        shift.closing_denoms = denoms or None
        if notes:
            shift.notes = notes.strip()
        shift.cashier_submitted_at = utcnow()
        shift.status = ShiftStatus.SUBMITTED
        return shift, drawer_snapshot(shift.id)

    return run_in_transaction(_op, serializable=True)


def final_close_shift(
    shift_id: int,
    manager_id: int,
    manager_counted,
    *,
    resolution: CashierVarianceResolution | None = None,
    paper_ref_no: str | None = None,
    note: str | None = None,
    now: datetime | None = None,
) -> tuple[CashierShift, CashierShiftVariance | None]:
    """
    Manager recount and audit of a SUBMITTED shift.

    A shortage needs a resolution and the paper reference of the signed
    variance slip. Any mismatch is recorded once per shift; CHARGE_CASHIER
    also records one cashier charge for the shortage.
    """
    if manager_counted is None:
        raise ValidationError("manager_counted is required")
    counted = round2(manager_counted)
    if counted < 0:
        raise ValidationError("manager_counted must be >= 0")
    paper_ref_no = (paper_ref_no or "").strip() or None
    now = now or utcnow()

    def _op():
        shift = _get_shift(shift_id, for_update=True)
        if shift.status != ShiftStatus.SUBMITTED:
            raise ShiftError(
                "Shift must be SUBMITTED before final close",
                details={"shift_id": shift.id, "status": shift.status.value},
            )

        expected = drawer_snapshot(shift.id).expected
        variance = round2(counted - expected)
        shortage = variance < -MONEY_EPS
        mismatch = abs(variance) > MONEY_EPS

        if shortage and (resolution is None or not paper_ref_no):
            raise ValidationError(
                "Shortage requires a resolution and paper reference number",
                details={"expected": str(expected), "counted": str(counted), "variance": str(variance)},
            )
        if resolution == CashierVarianceResolution.CHARGE_CASHIER and not shortage:
            raise ValidationError("CHARGE_CASHIER is only allowed for a shortage")

        record = None
        if mismatch:
            res = resolution or CashierVarianceResolution.INFO_ONLY
            record, _ = get_or_create(
                CashierShiftVariance,
                {"shift_id": shift.id},
                {"cashier_id": shift.cashier_id, "expected": expected, "counted": counted, "variance": variance},
            )
            record.expected = expected
            record.counted = counted
            record.variance = variance
            record.resolution = res
            record.status = (
                CashierVarianceStatus.WAIVED if res == CashierVarianceResolution.WAIVE
                else CashierVarianceStatus.MANAGER_APPROVED
            )
            record.paper_ref_no = paper_ref_no
            record.note = (note or "").strip() or None
            record.manager_approved_at = now
            record.manager_approved_by_id = manager_id
            db.session.flush()

            if res == CashierVarianceResolution.CHARGE_CASHIER:
                charge, _ = get_or_create(
                    CashierCharge,
                    {"variance_id": record.id},
                    {"shift_id": shift.id, "cashier_id": shift.cashier_id, "amount": -variance, "created_by_id": manager_id},
                )
                charge.amount = -variance
                charge.note = record.note
            elif record.charge is not None and record.charge.status == ChargeStatus.OPEN:
                record.charge.status = ChargeStatus.WAIVED

        assert_transition(SHIFT_TRANSITIONS, shift.status, ShiftStatus.FINAL_CLOSED, "Shift")
        shift.final_closing_total = counted
        shift.final_closed_by_id = manager_id
        shift.closed_at = now
        shift.status = ShiftStatus.FINAL_CLOSED
        audit = f"[FINAL CLOSE {to_utc_z(now)}] counted={counted} expected={expected} variance={variance}"
        if note:
            audit += f" note={note.strip()}"
        shift.notes = f"{shift.notes}\n{audit}" if shift.notes else audit
        return shift, record

    return run_in_transaction(_op, serializable=True)
