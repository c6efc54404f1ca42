"""
Cashier shift and drawer reconciliation tests.
"""

from decimal import Decimal

import pytest

from conftest import CASHIER_ID, MANAGER_ID, OTHER_CASHIER_ID
from settlepos.models import CashierCharge, CashierShiftVariance
from settlepos.models.states import (
    CashierVarianceResolution,
    CashierVarianceStatus,
    DrawerTxnType,
    ShiftStatus,
)
from settlepos.services import shift_service
from settlepos.services.settlement_service import settle_order
from settlepos.validation import ValidationError


# =============================================================================
# OPENING
# =============================================================================

def test_open_shift_is_idempotent_per_cashier(db_session):
    shift, created = shift_service.open_shift(CASHIER_ID, "1000.00", MANAGER_ID)
    assert created
    assert shift.status == ShiftStatus.PENDING_ACCEPT

    same, created = shift_service.open_shift(CASHIER_ID, "500.00", MANAGER_ID)
    assert not created
    assert same.id == shift.id
    assert same.opening_float == Decimal("1000.00")


def test_pending_shift_blocks_cash(db_session, products, make_order):
    shift, _ = shift_service.open_shift(CASHIER_ID, "1000.00", MANAGER_ID)
    order = make_order((products["rice"], 1, "PACK"))

    with pytest.raises(shift_service.ShiftError):
        settle_order(order.id, "500.00", cashier_id=CASHIER_ID, shift_id=shift.id)


def test_only_an_open_shift_is_writable(db_session):
    shift, _ = shift_service.open_shift(CASHIER_ID, "1000.00", MANAGER_ID)
    assert shift_service.get_writable_shift(CASHIER_ID) is None

    shift_service.accept_opening(shift.id, CASHIER_ID, "1000.00")
    assert shift_service.get_writable_shift(CASHIER_ID).id == shift.id
    assert shift_service.get_writable_shift(CASHIER_ID, shift.id + 1) is None
    assert shift_service.get_writable_shift(CASHIER_ID + 1) is None


def test_dispute_and_resend(db_session):
    shift, _ = shift_service.open_shift(CASHIER_ID, "1000.00", MANAGER_ID)

    with pytest.raises(ValidationError):
        shift_service.dispute_opening(shift.id, CASHIER_ID, "900.00", note="  ")

    disputed = shift_service.dispute_opening(shift.id, CASHIER_ID, "900.00", note="short one 100 bill")
    assert disputed.status == ShiftStatus.OPENING_DISPUTED
    assert disputed.opening_counted == Decimal("900.00")

    resent = shift_service.resend_opening(shift.id, MANAGER_ID, opening_float="900.00")
    assert resent.status == ShiftStatus.PENDING_ACCEPT
    assert resent.opening_float == Decimal("900.00")
    assert resent.opening_dispute_note is None

    accepted = shift_service.accept_opening(shift.id, CASHIER_ID, "900.00")
    assert accepted.status == ShiftStatus.OPEN
    assert accepted.opening_verified_by_id == CASHIER_ID


def test_only_owner_can_accept(db_session):
    shift, _ = shift_service.open_shift(CASHIER_ID, "1000.00", MANAGER_ID)
    with pytest.raises(shift_service.ShiftError):
        shift_service.accept_opening(shift.id, OTHER_CASHIER_ID, "1000.00")


# =============================================================================
# DRAWER
# =============================================================================

def test_drawer_expected_balance(db_session, products, make_order, open_shift, customer):
    order = make_order((products["rice"], 1, "PACK"))
    settle_order(order.id, "600.00", cashier_id=CASHIER_ID, shift_id=open_shift.id)

    shift_service.record_drawer_txn(open_shift.id, CASHIER_ID, DrawerTxnType.CASH_OUT, "200.00", note="ice")
    shift_service.record_drawer_txn(open_shift.id, CASHIER_ID, DrawerTxnType.DROP, "100.00")

    snapshot = shift_service.drawer_snapshot(open_shift.id)
    assert snapshot.cash_sales_in == Decimal("500.00")
    assert snapshot.withdrawals == Decimal("300.00")
    assert snapshot.expected == Decimal("1200.00")

    shift_service.record_ar_payment(customer.id, "50.00", open_shift.id, CASHIER_ID)
    shift_service.record_drawer_txn(open_shift.id, CASHIER_ID, DrawerTxnType.CASH_IN, "25.00")
    assert shift_service.drawer_snapshot(open_shift.id).expected == Decimal("1275.00")


def test_withdrawal_cannot_overdraw(db_session, open_shift):
    with pytest.raises(ValidationError) as exc:
        shift_service.record_drawer_txn(open_shift.id, CASHIER_ID, DrawerTxnType.CASH_OUT, "1000.01")
    assert exc.value.message == "Withdrawal exceeds drawer balance"

    shift_service.record_drawer_txn(open_shift.id, CASHIER_ID, DrawerTxnType.DROP, "1000.00")
    assert shift_service.drawer_snapshot(open_shift.id).expected == Decimal("0.00")


def test_drawer_rows_need_open_shift(db_session, open_shift):
    shift_service.submit_closing_count(open_shift.id, CASHIER_ID, counted="1000.00")
    with pytest.raises(shift_service.ShiftError):
        shift_service.record_drawer_txn(open_shift.id, CASHIER_ID, DrawerTxnType.CASH_IN, "10.00")


# =============================================================================
# CLOSING
# =============================================================================

def test_total_from_denoms():
    denoms = {"bills": {"1000": 1, "200": 2}, "coins": {"0.25": 4}}
    assert shift_service.total_from_denoms(denoms) == Decimal("1401.00")
    assert shift_service.total_from_denoms({"500": 2}) == Decimal("1000.00")

    with pytest.raises(ValidationError):
        shift_service.total_from_denoms({"300": 1})
    with pytest.raises(ValidationError):
        shift_service.total_from_denoms({"100": -1})
    with pytest.raises(ValidationError):
        shift_service.total_from_denoms({"100": 1.5})


def test_submit_count_once(db_session, open_shift):
    shift, snapshot = shift_service.submit_closing_count(
        open_shift.id, CASHIER_ID, denoms={"bills": {"500": 2}}
    )
    assert shift.status == ShiftStatus.SUBMITTED
    assert shift.closing_total == Decimal("1000.00")
    assert snapshot.expected == Decimal("1000.00")

    with pytest.raises(shift_service.ShiftError):
        shift_service.submit_closing_count(open_shift.id, CASHIER_ID, counted="1000.00")


def test_final_close_needs_submitted_shift(db_session, open_shift):
    with pytest.raises(shift_service.ShiftError):
        shift_service.final_close_shift(open_shift.id, MANAGER_ID, "1000.00")


def test_exact_close_has_no_variance(db_session, open_shift):
    shift_service.submit_closing_count(open_shift.id, CASHIER_ID, counted="1000.00")

    shift, record = shift_service.final_close_shift(open_shift.id, MANAGER_ID, "1000.00")

    assert shift.status == ShiftStatus.FINAL_CLOSED
    assert shift.final_closing_total == Decimal("1000.00")
    assert "[FINAL CLOSE" in shift.notes
    assert record is None


def test_shortage_needs_resolution_and_paper_ref(db_session, open_shift):
    shift_service.submit_closing_count(open_shift.id, CASHIER_ID, counted="950.00")

    with pytest.raises(ValidationError):
        shift_service.final_close_shift(open_shift.id, MANAGER_ID, "950.00")
    with pytest.raises(ValidationError):
        shift_service.final_close_shift(
            open_shift.id, MANAGER_ID, "950.00", resolution=CashierVarianceResolution.CHARGE_CASHIER
        )

    shift, record = shift_service.final_close_shift(
        open_shift.id,
        MANAGER_ID,
        "950.00",
        resolution=CashierVarianceResolution.CHARGE_CASHIER,
        paper_ref_no="VS-0042",
    )

    assert shift.status == ShiftStatus.FINAL_CLOSED
    assert record.variance == Decimal("-50.00")
    assert record.status == CashierVarianceStatus.MANAGER_APPROVED
    assert record.paper_ref_no == "VS-0042"
    [charge] = db_session.query(CashierCharge).all()
    assert charge.amount == Decimal("50.00")
    assert charge.cashier_id == CASHIER_ID


def test_overage_is_recorded_for_information(db_session, open_shift):
    shift_service.submit_closing_count(open_shift.id, CASHIER_ID, counted="1020.00")

    with pytest.raises(ValidationError):
        shift_service.final_close_shift(
            open_shift.id, MANAGER_ID, "1020.00", resolution=CashierVarianceResolution.CHARGE_CASHIER
        )

    _, record = shift_service.final_close_shift(open_shift.id, MANAGER_ID, "1020.00")
    assert record.resolution == CashierVarianceResolution.INFO_ONLY
    assert record.variance == Decimal("20.00")
    assert db_session.query(CashierCharge).count() == 0


def test_waived_shortage(db_session, open_shift):
    shift_service.submit_closing_count(open_shift.id, CASHIER_ID, counted="990.00")

    _, record = shift_service.final_close_shift(
        open_shift.id, MANAGER_ID, "990.00",
        resolution=CashierVarianceResolution.WAIVE, paper_ref_no="VS-0043",
    )

    assert record.status == CashierVarianceStatus.WAIVED
    assert db_session.query(CashierShiftVariance).count() == 1
    assert db_session.query(CashierCharge).count() == 0
