"""
Counter settlement tests.

Covers the all-or-nothing settlement transaction: payment, stock, price
guard, receipt numbering, order status and the TTL lock.
"""

import re
from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import CASHIER_ID, OTHER_CASHIER_ID
from settlepos.models import Payment, Product, ReceiptCounter, StockMovement
from settlepos.models.states import OrderChannel, OrderStatus, PriceMode, PricePolicy, UnitKind
from settlepos.services import customer_pricing_service, lock_service, order_service, shift_service
from settlepos.services.concurrency import run_in_transaction
from settlepos.services.settlement_service import SettlementRoute, decide_settlement_route, settle_order
from settlepos.time_utils import utcnow
from settlepos.validation import (
    ConflictError,
    IntegrityViolation,
    LockConflictError,
    PriceViolationError,
    ValidationError,
)


def settle(order, cash, shift, **kwargs):
    return settle_order(order.id, cash, cashier_id=CASHIER_ID, shift_id=shift.id, **kwargs)


def payment_count(db_session, order):
    return db_session.query(Payment).filter_by(order_id=order.id).count()


# =============================================================================
# ROUTING
# =============================================================================

def test_decide_settlement_route():
    assert decide_settlement_route("0.00", False) == SettlementRoute.WORK_QUEUE
    assert decide_settlement_route("0.00", True) == SettlementRoute.OFFICIAL_RECEIPT
    assert decide_settlement_route("0.01", True) == SettlementRoute.OFFICIAL_RECEIPT
    assert decide_settlement_route("120.00", True) == SettlementRoute.ACKNOWLEDGMENT
    assert decide_settlement_route("120.00", False) == SettlementRoute.WORK_QUEUE


# =============================================================================
# FULL PAYMENT
# =============================================================================

def test_exact_cash_marks_paid_with_one_receipt(db_session, products, make_order, open_shift):
    order = make_order((products["rice"], 1, "PACK"))

    result = settle(order, "500.00", open_shift, print_receipt=True)

    assert result.order.status == OrderStatus.PAID
    assert result.remaining == Decimal("0.00")
    assert result.route == SettlementRoute.OFFICIAL_RECEIPT
    assert re.match(r"^\d{8}-000001$", result.receipt_no)
    assert db_session.get(ReceiptCounter, 1).last_seq == 1

    rice = db_session.get(Product, products["rice"].id)
    assert rice.stock == Decimal("4")
    assert db_session.query(StockMovement).count() == 1


def test_order_fields_after_full_payment(db_session, products, make_order, open_shift):
    order = make_order((products["rice"], 1, "PACK"))
    settle(order, "600.00", open_shift)

    order = order_service.get_order(order.id)
    assert order.status == OrderStatus.PAID
    assert order.paid_at is not None
    assert order.stock_deducted_at is not None
    assert order.is_on_credit is False
    assert order.locked_by is None
    assert order.locked_at is None

    [payment] = order.payments
    assert payment.amount == Decimal("500.00")
    assert payment.tendered == Decimal("600.00")
    assert payment.change == Decimal("100.00")
    assert payment.shift_id == open_shift.id


def test_receipt_numbers_are_monotonic(db_session, products, make_order, open_shift):
    first = settle(make_order((products["feed"], 1, "PACK")), "300.00", open_shift)
    second = settle(make_order((products["feed"], 1, "PACK")), "300.00", open_shift)
    assert first.receipt_no.endswith("-000001")
    assert second.receipt_no.endswith("-000002")


# =============================================================================
# PARTIAL PAYMENT
# =============================================================================

def test_partial_payment_without_customer_is_rejected(db_session, products, make_order, open_shift):
    order = make_order((products["rice"], 1, "PACK"))

    with pytest.raises(ValidationError) as exc:
        settle(order, "200.00", open_shift)

    assert "customer" in exc.value.message
    assert payment_count(db_session, order) == 0
    order = order_service.get_order(order.id)
    assert order.status == OrderStatus.UNPAID
    assert order.locked_by is None


def test_partial_payment_goes_on_credit_without_stock(db_session, products, make_order, open_shift, customer):
    order = make_order((products["rice"], 1, "PACK"))

    result = settle(order, "200.00", open_shift, customer_id=customer.id, print_receipt=True)

    assert result.order.status == OrderStatus.PARTIALLY_PAID
    assert result.order.is_on_credit is True
    assert result.order.customer_id == customer.id
    assert result.remaining == Decimal("300.00")
    assert result.receipt_no is None
    assert result.route == SettlementRoute.ACKNOWLEDGMENT
    assert result.stock_deducted is False
    assert db_session.get(Product, products["rice"].id).stock == Decimal("5")


def test_balance_can_be_paid_later(db_session, products, make_order, open_shift, customer):
    order = make_order((products["rice"], 1, "PACK"), customer_id=customer.id)
    settle(order, "200.00", open_shift)

    result = settle(order, "300.00", open_shift)

    assert result.already_paid == Decimal("200.00")
    assert result.applied == Decimal("300.00")
    assert result.order.status == OrderStatus.PAID
    assert result.receipt_no is not None
    assert db_session.get(Product, products["rice"].id).stock == Decimal("4")
    assert payment_count(db_session, order) == 2


def test_release_with_balance_needs_manager(db_session, products, make_order, open_shift, customer):
    order = make_order((products["rice"], 1, "PACK"), customer_id=customer.id)

    with pytest.raises(ValidationError):
        settle(order, "200.00", open_shift, release_with_balance=True)
    assert payment_count(db_session, order) == 0


def test_release_with_balance_deducts_stock_once(db_session, products, make_order, open_shift, customer):
    order = make_order((products["rice"], 1, "PACK"), customer_id=customer.id)

    first = settle(order, "200.00", open_shift, release_with_balance=True, release_approved_by="mgr-1")
    assert first.order.status == OrderStatus.PARTIALLY_PAID
    assert first.order.release_approved_by == "mgr-1"
    assert first.order.released_at is not None
    assert first.stock_deducted is True
    assert db_session.get(Product, products["rice"].id).stock == Decimal("4")

    second = settle(order, "300.00", open_shift)
    assert second.order.status == OrderStatus.PAID
    assert second.stock_deducted is False
    assert db_session.get(Product, products["rice"].id).stock == Decimal("4")


def test_non_positive_cash_is_rejected(db_session, products, make_order, open_shift):
    order = make_order((products["rice"], 1, "PACK"))
    with pytest.raises(ValidationError):
        settle(order, "0", open_shift)
    with pytest.raises(ValidationError):
        settle(order, "-5", open_shift)


# =============================================================================
# PRICE GUARD
# =============================================================================

def _marked_down_order(db_session, products, customer, make_order):
    soap = products["soap"]
    customer_pricing_service.set_customer_price(customer.id, soap.id, UnitKind.PACK, PriceMode.PERCENT_DISCOUNT, "10")
    order = make_order((soap, 1, "PACK"), customer_id=customer.id)
    item = order.items[0]
    assert item.unit_price == Decimal("90.00")

    # Cashier keyed a lower price than the customer is allowed
    item.unit_price = Decimal("85.00")
    item.line_total = Decimal("85.00")
    order.subtotal = Decimal("85.00")
    db_session.commit()
    return order


def test_price_below_allowed_needs_approval(db_session, products, make_order, open_shift, customer):
    order = _marked_down_order(db_session, products, customer, make_order)

    with pytest.raises(PriceViolationError) as exc:
        settle(order, "85.00", open_shift)

    assert "allowed 90.00, actual 85.00" in exc.value.message
    [violation] = exc.value.details["violations"]
    assert violation["allowed"] == "90.00"
    assert violation["actual"] == "85.00"
    assert payment_count(db_session, order) == 0
    assert db_session.get(Product, products["soap"].id).stock == Decimal("10")


def test_approved_markdown_settles_and_is_audited(db_session, products, make_order, open_shift, customer):
    order = _marked_down_order(db_session, products, customer, make_order)

    result = settle(order, "85.00", open_shift, discount_approved_by="mgr-1")

    assert result.order.status == OrderStatus.PAID
    item = result.order.items[0]
    assert item.allowed_unit_price == Decimal("90.00")
    assert item.price_policy == PricePolicy.PER_ITEM
    assert item.discount_approved_by == "mgr-1"
    assert db_session.get(Product, products["soap"].id).stock == Decimal("9")


def test_base_priced_line_is_recorded_as_base(db_session, products, make_order, open_shift):
    result = settle(make_order((products["soap"], 1, "PACK")), "100.00", open_shift)
    item = result.order.items[0]
    assert item.price_policy == PricePolicy.BASE
    assert item.discount_approved_by is None


# =============================================================================
# INVENTORY
# =============================================================================

def test_insufficient_stock_aborts_everything(db_session, products, make_order, open_shift):
    order = make_order((products["rice"], 6, "PACK"))

    with pytest.raises(IntegrityViolation) as exc:
        settle(order, "3000.00", open_shift)

    assert exc.value.status_code == 422
    [error] = exc.value.details["errors"]
    assert error["product_id"] == products["rice"].id
    assert "Not enough stock" in error["reason"]
    assert payment_count(db_session, order) == 0
    assert db_session.get(Product, products["rice"].id).stock == Decimal("5")
    assert order_service.get_order(order.id).status == OrderStatus.UNPAID


def test_unit_kind_is_inferred_from_price(db_session, products, make_order, open_shift):
    order = make_order((products["soap"], 2, "RETAIL"))
    order.items[0].unit_kind = None
    db_session.commit()

    settle(order, "50.00", open_shift)

    soap = db_session.get(Product, products["soap"].id)
    assert soap.retail_stock == Decimal("18")
    assert soap.stock == Decimal("10")


def test_unclassifiable_price_is_an_integrity_error(db_session, products, make_order, open_shift):
    order = make_order((products["soap"], 2, "RETAIL"))
    item = order.items[0]
    item.unit_kind = None
    item.unit_price = Decimal("60.00")
    item.line_total = Decimal("120.00")
    order.subtotal = Decimal("120.00")
    db_session.commit()

    with pytest.raises(IntegrityViolation) as exc:
        settle(order, "120.00", open_shift)

    assert exc.value.details["errors"][0]["reason"] == "Cannot infer retail/pack from price"
    assert payment_count(db_session, order) == 0


# =============================================================================
# LOCKS AND GATES
# =============================================================================

def test_live_lock_held_by_another_cashier_is_423(db_session, products, make_order, open_shift):
    order = make_order((products["rice"], 1, "PACK"))
    run_in_transaction(lambda: lock_service.claim_order_lock(order.id, "99", note="CLAIM"), serializable=True)

    with pytest.raises(LockConflictError) as exc:
        settle(order, "500.00", open_shift)

    assert exc.value.status_code == 423
    assert payment_count(db_session, order) == 0


def test_expired_lock_can_be_taken_over(db_session, products, make_order, open_shift):
    order = make_order((products["rice"], 1, "PACK"))
    stale = utcnow() - timedelta(minutes=10)
    run_in_transaction(lambda: lock_service.claim_order_lock(order.id, "99", now=stale), serializable=True)

    result = settle(order, "500.00", open_shift)
    assert result.order.status == OrderStatus.PAID


def test_release_expired_locks(db_session, products, make_order):
    order = make_order((products["rice"], 1, "PACK"))
    stale = utcnow() - timedelta(minutes=10)
    run_in_transaction(lambda: lock_service.claim_order_lock(order.id, "99", now=stale), serializable=True)

    assert lock_service.release_expired_locks() == 1
    assert order_service.get_order(order.id).locked_by is None


def test_settled_order_cannot_be_settled_again(db_session, products, make_order, open_shift):
    order = make_order((products["rice"], 1, "PACK"))
    settle(order, "500.00", open_shift)

    with pytest.raises(ConflictError) as exc:
        settle(order, "500.00", open_shift)
    assert exc.value.status_code == 409


def test_drawer_must_be_open(db_session, products, make_order, open_shift):
    order = make_order((products["rice"], 1, "PACK"))

    with pytest.raises(shift_service.ShiftError):
        settle_order(order.id, "500.00", cashier_id=CASHIER_ID, shift_id=None)
    with pytest.raises(shift_service.ShiftError):
        settle_order(order.id, "500.00", cashier_id=OTHER_CASHIER_ID, shift_id=open_shift.id)

    shift_service.submit_closing_count(open_shift.id, CASHIER_ID, counted="1000.00")
    with pytest.raises(shift_service.ShiftError) as exc:
        settle(order, "500.00", open_shift)
    assert exc.value.status_code == 409
    assert payment_count(db_session, order) == 0


def test_delivery_orders_are_not_settled_at_the_counter(db_session, products, make_order, open_shift):
    order = make_order((products["feed"], 1, "PACK"), channel=OrderChannel.DELIVERY)

    with pytest.raises(ConflictError) as exc:
        settle(order, "300.00", open_shift)
    assert exc.value.status_code == 409
    assert order_service.get_order(order.id).locked_by is None


# =============================================================================
# VOIDING
# =============================================================================

def test_cancel_unpaid_order(db_session, products, make_order, open_shift):
    order = make_order((products["rice"], 1, "PACK"))
    cancelled = order_service.cancel_order(order.id, str(CASHIER_ID), note="customer left")
    assert cancelled.status == OrderStatus.CANCELLED
    assert cancelled.cancelled_at is not None

    with pytest.raises(ConflictError):
        settle(order, "500.00", open_shift)


def test_cancel_paid_order_is_rejected(db_session, products, make_order, open_shift):
    order = make_order((products["rice"], 1, "PACK"))
    settle(order, "500.00", open_shift)

    with pytest.raises(ConflictError) as exc:
        order_service.cancel_order(order.id, str(CASHIER_ID))
    assert exc.value.status_code == 409


def test_cancel_respects_live_lock(db_session, products, make_order):
    order = make_order((products["rice"], 1, "PACK"))
    run_in_transaction(lambda: lock_service.claim_order_lock(order.id, "99"), serializable=True)

    with pytest.raises(LockConflictError):
        order_service.cancel_order(order.id, str(CASHIER_ID))
