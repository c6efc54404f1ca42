"""
Rider cash remittance tests.

The bridge math is pure and checked directly; the remit service is checked
against a delivery order with a PARENT run receipt.
"""

from decimal import Decimal

import pytest

from conftest import CASHIER_ID, RIDER_ID
from settlepos.models import Order, Payment, Product, RiderRunVariance
from settlepos.models.states import OrderStatus, PaymentMethod, VarianceStatus
from settlepos.services import lock_service, order_service, shift_service
from settlepos.services.concurrency import run_in_transaction
from settlepos.services.rider_cash_service import (
    compute_rider_cash_bridge,
    preview_rider_cash,
    remit_delivery_order,
)
from settlepos.validation import ConflictError, IntegrityViolation, ValidationError


# =============================================================================
# BRIDGE MATH
# =============================================================================

def test_short_rider_on_fully_collected_receipt_is_bridged():
    bridge = compute_rider_cash_bridge("300", "300", "0", "0", "250", receipt_id=1)
    assert bridge.applied_payment == Decimal("250.00")
    assert bridge.shortage == Decimal("50.00")
    assert bridge.should_bridge
    assert bridge.bridge_amount == Decimal("50.00")
    assert bridge.customer_settled_now == Decimal("300.00")
    assert bridge.remaining == Decimal("0.00")
    assert bridge.fully_settled


def test_partially_collected_receipt_is_not_bridged():
    # Customer only paid the rider 250 of 300: the customer owes, not the rider
    bridge = compute_rider_cash_bridge("300", "250", "0", "0", "250", receipt_id=1)
    assert bridge.shortage == Decimal("0.00")
    assert not bridge.should_bridge
    assert bridge.remaining == Decimal("50.00")


def test_unbridged_shortage_still_counts_toward_settled():
    bridge = compute_rider_cash_bridge("300", "250", "0", "0", "200", receipt_id=1)
    assert bridge.shortage == Decimal("50.00")
    assert not bridge.should_bridge
    assert bridge.customer_settled_now == Decimal("250.00")
    assert bridge.remaining == Decimal("50.00")


def test_rider_cash_is_clamped_to_total():
    over = compute_rider_cash_bridge("300", "350", "0", "0", "400", receipt_id=1)
    assert over.rider_cash == Decimal("300.00")
    assert over.applied_payment == Decimal("300.00")
    assert over.shortage == Decimal("0.00")

    under = compute_rider_cash_bridge("300", "-10", "0", "0", "100", receipt_id=1)
    assert under.rider_cash == Decimal("0.00")
    assert under.applied_payment == Decimal("0.00")
    assert under.remaining == Decimal("300.00")


def test_prior_cash_reduces_what_is_due():
    bridge = compute_rider_cash_bridge("300", "300", "100", "0", "150", receipt_id=1)
    assert bridge.paid_for_run_before == Decimal("100.00")
    assert bridge.due_before_run == Decimal("200.00")
    assert bridge.applied_payment == Decimal("150.00")
    assert bridge.bridge_amount == Decimal("50.00")
    assert bridge.remaining == Decimal("0.00")


def test_only_one_bridge_per_receipt():
    bridge = compute_rider_cash_bridge("300", "300", "0", "50", "250", receipt_id=1)
    assert not bridge.should_bridge
    assert bridge.bridge_amount == Decimal("0.00")


def test_no_receipt_means_no_shortage():
    bridge = compute_rider_cash_bridge("300", "300", "0", "0", "100", receipt_id=None)
    assert bridge.shortage == Decimal("0.00")
    assert not bridge.should_bridge
    assert bridge.remaining == Decimal("200.00")


def test_money_is_conserved_without_a_prior_bridge():
    for rider in ("0", "120", "299.99", "300"):
        for paid in ("0", "50", "300"):
            for handed in ("0", "75.50", "300", "500"):
                b = compute_rider_cash_bridge("300", rider, paid, "0", handed, receipt_id=7)
                parts = b.already_paid_cash + b.already_bridged + b.applied_payment + b.shortage + b.remaining
                assert parts == b.final_total, (rider, paid, handed)


# =============================================================================
# REMIT SERVICE
# =============================================================================

def remit(order, cash, shift, **kwargs):
    return remit_delivery_order(order.id, cash, cashier_id=CASHIER_ID, shift_id=shift.id, **kwargs)


def test_short_remit_bridges_and_opens_variance(db_session, products, delivery_order, open_shift):
    order, receipt = delivery_order("300.00")

    result = remit(order, "250.00", open_shift)

    assert result.order.status == OrderStatus.PAID
    assert result.receipt_no is not None
    assert result.cash_payment.method == PaymentMethod.CASH
    assert result.cash_payment.amount == Decimal("250.00")
    assert result.cash_payment.ref_no == "MAIN-DELIVERY"
    assert result.bridge_payment.method == PaymentMethod.INTERNAL_CREDIT
    assert result.bridge_payment.amount == Decimal("50.00")
    assert result.bridge_payment.ref_no == f"RIDER-SHORTAGE:RR:{receipt.id}"

    variance = result.variance
    assert variance.status == VarianceStatus.OPEN
    assert variance.rider_id == RIDER_ID
    assert variance.run_id == receipt.run_id
    assert variance.expected == Decimal("300.00")
    assert variance.actual == Decimal("250.00")
    assert variance.variance == Decimal("-50.00")

    # Goods left with the rider; remit does not touch stock
    assert db_session.get(Product, products["feed"].id).stock == Decimal("5")


def test_variance_actual_is_only_this_remits_cash(db_session, delivery_order, open_shift):
    order, receipt = delivery_order("300.00")
    db_session.add(Payment(order_id=order.id, method=PaymentMethod.CASH, amount=Decimal("100.00"),
                           ref_no="MAIN-DELIVERY", cashier_id=CASHIER_ID))
    db_session.get(Order, order.id).status = OrderStatus.PARTIALLY_PAID
    db_session.commit()

    result = remit(order, "150.00", open_shift)

    assert result.bridge.applied_payment == Decimal("150.00")
    assert result.bridge_payment.amount == Decimal("50.00")
    assert result.order.status == OrderStatus.PAID

    # Earlier cash on the order is not folded into the audit value
    variance = result.variance
    assert variance.expected == Decimal("300.00")
    assert variance.actual == Decimal("150.00")
    assert variance.variance == Decimal("-150.00")


def test_repeat_remit_on_paid_order_is_a_noop(db_session, products, delivery_order, open_shift):
    order, receipt = delivery_order("300.00")
    remit(order, "250.00", open_shift)

    again = remit(order, "250.00", open_shift)

    assert again.noop
    assert again.order.status == OrderStatus.PAID
    assert db_session.query(Payment).filter_by(order_id=order.id).count() == 2
    assert db_session.query(RiderRunVariance).filter_by(receipt_id=receipt.id).count() == 1


def test_exact_remit_has_no_variance(db_session, products, delivery_order, open_shift):
    order, _ = delivery_order("300.00")

    result = remit(order, "300.00", open_shift)

    assert result.order.status == OrderStatus.PAID
    assert result.bridge_payment is None
    assert result.variance is None
    assert db_session.query(RiderRunVariance).count() == 0


def test_over_handing_returns_change(db_session, products, delivery_order, open_shift):
    order, _ = delivery_order("300.00")
    result = remit(order, "350.00", open_shift)
    assert result.cash_payment.amount == Decimal("300.00")
    assert result.cash_payment.change == Decimal("50.00")


def test_customer_short_payment_goes_on_credit(db_session, products, delivery_order, open_shift):
    order, _ = delivery_order("250.00")

    result = remit(order, "250.00", open_shift)

    assert result.order.status == OrderStatus.PARTIALLY_PAID
    assert result.order.is_on_credit is True
    assert result.bridge_payment is None
    assert result.bridge.remaining == Decimal("50.00")


def test_receipt_on_another_run_is_rejected(db_session, products, delivery_order, open_shift):
    order, _ = delivery_order("300.00")
    _, foreign = delivery_order("300.00")
    order.origin_run_receipt_id = foreign.id
    db_session.commit()

    with pytest.raises(IntegrityViolation) as exc:
        remit(order, "300.00", open_shift)

    assert exc.value.status_code == 422
    assert db_session.query(Payment).filter_by(order_id=order.id).count() == 0


def test_remit_needs_open_shift(db_session, products, delivery_order, open_shift):
    order, _ = delivery_order("300.00")
    with pytest.raises(shift_service.ShiftError):
        remit_delivery_order(order.id, "300.00", cashier_id=CASHIER_ID, shift_id=None)


def test_negative_cash_is_rejected(db_session, products, delivery_order, open_shift):
    order, _ = delivery_order("300.00")
    with pytest.raises(ValidationError):
        remit(order, "-1", open_shift)


def test_remit_lock_contention_is_409(db_session, products, delivery_order, open_shift):
    order, _ = delivery_order("300.00")
    run_in_transaction(lambda: lock_service.claim_order_lock(order.id, "99"), serializable=True)

    with pytest.raises(ConflictError) as exc:
        remit(order, "300.00", open_shift)

    assert exc.value.status_code == 409
    assert order_service.get_order(order.id).status == OrderStatus.UNPAID


def test_preview_writes_nothing(db_session, products, delivery_order):
    order, receipt = delivery_order("300.00")

    preview = preview_rider_cash(order.id, "250")

    assert preview["receipt"]["id"] == receipt.id
    assert preview["bridge"]["shortage"] == "50.00"
    assert preview["bridge"]["should_bridge"] is True
    assert preview["settled_so_far"] == "0.00"
    assert db_session.query(Payment).count() == 0
