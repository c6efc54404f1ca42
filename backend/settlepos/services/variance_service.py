"""
Rider Variance Workflow

WHY: A bridged shortage settles the customer but leaves the store out of
pocket. Someone has to decide who carries it: the manager decides, the
rider acknowledges a charge, the cashier archives the result.

    OPEN --decide(CHARGE_RIDER | INFO_ONLY)--> MANAGER_APPROVED
    OPEN --decide(WAIVE)---------------------> WAIVED
    MANAGER_APPROVED + CHARGE_RIDER --accept--> RIDER_ACCEPTED
    WAIVED | RIDER_ACCEPTED | info-only -----> CLOSED (cashier)

A manager may re-decide while the variance is still MANAGER_APPROVED.
Each variance has at most one RiderCharge; deciding away from CHARGE_RIDER
waives it instead of deleting it.
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app

from ..extensions import db
from ..models import RiderCharge, RiderChargePayment, RiderRunVariance
from ..models.states import (
    CHARGE_TRANSITIONS,
    VARIANCE_TRANSITIONS,
    ChargePaymentMethod,
    ChargeStatus,
    VarianceResolution,
    VarianceStatus,
    assert_transition,
)
from ..time_utils import utcnow
from ..validation import ConflictError, NotFoundError, ValidationError
from . import shift_service
from .concurrency import get_or_create, lock_for_update, run_in_transaction
from .money import MONEY_EPS, ZERO, is_positive, round2, sum_money, to_decimal

DECIDABLE = (VarianceStatus.OPEN, VarianceStatus.MANAGER_APPROVED)
PAYABLE_CHARGE = (ChargeStatus.OPEN, ChargeStatus.PARTIALLY_SETTLED)


def _get_variance(variance_id: int) -> RiderRunVariance:
    variance = lock_for_update(db.session.query(RiderRunVariance).filter_by(id=variance_id)).first()
    if variance is None:
        raise NotFoundError("Variance not found")
    return variance


def _get_charge(charge_id: int) -> RiderCharge:
    charge = lock_for_update(db.session.query(RiderCharge).filter_by(id=charge_id)).first()
    if charge is None:
        raise NotFoundError("Rider charge not found")
    return charge


def shortage_amount(variance: RiderRunVariance):
    """Positive amount the rider is short, or 0 for an exact/over remit."""
    v = to_decimal(variance.variance)
    return round2(-v) if v < 0 else ZERO


def _waive_charge(variance: RiderRunVariance, note: str | None) -> None:
    charge = variance.charge
    if charge is None or charge.status not in PAYABLE_CHARGE:
        return
    charge.status = ChargeStatus.WAIVED
    if note:
        charge.note = note


def _ensure_charge(variance: RiderRunVariance, manager_id: int | None, note: str | None) -> RiderCharge:
    amount = shortage_amount(variance)
    charge, created = get_or_create(
        RiderCharge,
        {"variance_id": variance.id},
        {
            "run_id": variance.run_id,
            "rider_id": variance.rider_id,
            "amount": amount,
            "status": ChargeStatus.OPEN,
            "created_by_id": manager_id,
            "note": note,
        },
    )
    if created:
        return charge
    if charge.status == ChargeStatus.WAIVED:
        assert_transition(CHARGE_TRANSITIONS, charge.status, ChargeStatus.OPEN, "Rider charge")
        charge.status = ChargeStatus.OPEN
    if charge.status == ChargeStatus.OPEN:
        charge.amount = amount
    if note:
        charge.note = note
    return charge


def decide_variance(
    variance_id: int,
    resolution: VarianceResolution,
    manager_id: int,
    note: str | None = None,
    now: datetime | None = None,
) -> RiderRunVariance:
    now = now or utcnow()
    note = (note or "").strip() or None

    def _op():
        variance = _get_variance(variance_id)
        if variance.status not in DECIDABLE:
            raise ConflictError(
                "Variance is no longer open for a manager decision",
                details={"variance_id": variance_id, "status": variance.status.value},
            )

        target = VarianceStatus.WAIVED if resolution == VarianceResolution.WAIVE else VarianceStatus.MANAGER_APPROVED
        assert_transition(VARIANCE_TRANSITIONS, variance.status, target, "Variance")

        variance.status = target
        variance.resolution = resolution
        variance.manager_approved_at = now
        variance.manager_approved_by_id = manager_id
        if note:
            variance.note = note

        if resolution == VarianceResolution.CHARGE_RIDER and is_positive(shortage_amount(variance)):
            _ensure_charge(variance, manager_id, note)
        else:
            _waive_charge(variance, note)

        db.session.flush()
        current_app.logger.info(
            "Variance %s decided %s by manager %s", variance.id, resolution.value, manager_id
        )
        return variance

    return run_in_transaction(_op, serializable=True)


def accept_variance(variance_id: int, rider_id: int, now: datetime | None = None) -> RiderRunVariance:
    """Rider acknowledges a charge the manager decided. Repeating it is a no-op."""
    now = now or utcnow()

    def _op():
        variance = _get_variance(variance_id)
        if variance.rider_id != rider_id:
            raise ConflictError("Variance belongs to another rider", details={"variance_id": variance_id})
        if variance.status == VarianceStatus.RIDER_ACCEPTED:
            return variance
        if not is_positive(shortage_amount(variance)):
            raise ConflictError("Only shortages can be accepted", details={"variance_id": variance_id})
        if variance.status != VarianceStatus.MANAGER_APPROVED or variance.resolution != VarianceResolution.CHARGE_RIDER:
            raise ConflictError(
                "Variance is not awaiting rider acceptance",
                details={"variance_id": variance_id, "status": variance.status.value},
            )

        assert_transition(VARIANCE_TRANSITIONS, variance.status, VarianceStatus.RIDER_ACCEPTED, "Variance")
        variance.status = VarianceStatus.RIDER_ACCEPTED
        variance.rider_accepted_at = now
        variance.rider_accepted_by_id = rider_id
        _ensure_charge(variance, variance.manager_approved_by_id, None)
        db.session.flush()
        return variance

    return run_in_transaction(_op, serializable=True)


def _closable(variance: RiderRunVariance) -> bool:
    if variance.status in (VarianceStatus.WAIVED, VarianceStatus.RIDER_ACCEPTED):
        return True
    if variance.status != VarianceStatus.MANAGER_APPROVED:
        return False
    # A charge must be acknowledged by the rider first
    return variance.resolution != VarianceResolution.CHARGE_RIDER or not is_positive(shortage_amount(variance))


def close_variance(variance_id: int, cashier_id: int, now: datetime | None = None) -> RiderRunVariance:
    now = now or utcnow()

    def _op():
        variance = _get_variance(variance_id)
        if variance.status == VarianceStatus.CLOSED:
            return variance
        if not _closable(variance):
            raise ConflictError(
                "Variance is still awaiting a manager or rider decision",
                details={"variance_id": variance_id, "status": variance.status.value},
            )
        assert_transition(VARIANCE_TRANSITIONS, variance.status, VarianceStatus.CLOSED, "Variance")
        variance.status = VarianceStatus.CLOSED
        variance.resolved_at = now
        variance.resolved_by_id = cashier_id
        db.session.flush()
        return variance

    return run_in_transaction(_op, serializable=True)


def get_variance(variance_id: int) -> RiderRunVariance:
    variance = db.session.get(RiderRunVariance, variance_id)
    if variance is None:
        raise NotFoundError("Variance not found")
    return variance


def list_variances(
    status: VarianceStatus | None = None,
    rider_id: int | None = None,
    run_id: int | None = None,
    limit: int = 100,
) -> list[RiderRunVariance]:
    q = db.session.query(RiderRunVariance)
    if status is not None:
        q = q.filter(RiderRunVariance.status == status)
    if rider_id is not None:
        q = q.filter(RiderRunVariance.rider_id == rider_id)
    if run_id is not None:
        q = q.filter(RiderRunVariance.run_id == run_id)
    return q.order_by(RiderRunVariance.id.desc()).limit(limit).all()


# =============================================================================
# RIDER CHARGES
# =============================================================================

def charge_balance(charge: RiderCharge):
    paid = sum_money(p.amount for p in charge.payments)
    return round2(to_decimal(charge.amount) - paid)


def list_rider_charges(rider_id: int | None = None, status: ChargeStatus | None = None) -> list[RiderCharge]:
    q = db.session.query(RiderCharge)
    if rider_id is not None:
        q = q.filter(RiderCharge.rider_id == rider_id)
    if status is not None:
        q = q.filter(RiderCharge.status == status)
    return q.order_by(RiderCharge.id.desc()).all()


def record_rider_charge_payment(
    charge_id: int,
    amount,
    method: ChargePaymentMethod,
    *,
    cashier_id: int,
    shift_id: int | None = None,
    ref_no: str | None = None,
    note: str | None = None,
    now: datetime | None = None,
) -> RiderChargePayment:
    """
    Append a payment against a rider charge. Cash goes through the
    cashier's open drawer; payroll deductions and adjustments do not.
    """
    amt = round2(amount)
    if amt <= 0:
        raise ValidationError("amount must be > 0")
    now = now or utcnow()

    def _op():
        charge = _get_charge(charge_id)
        if charge.status not in PAYABLE_CHARGE:
            raise ConflictError(
                "Rider charge is not open for payment",
                details={"charge_id": charge_id, "status": charge.status.value},
            )
        if method == ChargePaymentMethod.CASH:
            shift_service.require_writable_shift(shift_id, cashier_id)

        outstanding = charge_balance(charge)
        if amt > outstanding + MONEY_EPS:
            raise ValidationError(
                "Payment exceeds the outstanding charge",
                details={"outstanding": str(outstanding)},
            )

        payment = RiderChargePayment(
            charge=charge,
            amount=amt,
            method=method,
            ref_no=(ref_no or "").strip() or None,
            note=note,
            shift_id=shift_id if method == ChargePaymentMethod.CASH else None,
            cashier_id=cashier_id,
        )
        db.session.add(payment)
        db.session.flush()

        if is_positive(charge_balance(charge)):
            target = ChargeStatus.PARTIALLY_SETTLED
        else:
            target = ChargeStatus.SETTLED
        assert_transition(CHARGE_TRANSITIONS, charge.status, target, "Rider charge")
        charge.status = target
        if target == ChargeStatus.SETTLED:
            charge.settled_at = now
        return payment

    return run_in_transaction(_op, serializable=True)
