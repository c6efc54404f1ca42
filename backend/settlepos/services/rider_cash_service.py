"""
Rider Cash Remittance

WHY: For delivery orders the rider collects cash from the customer and
hands it to the cashier later. The run receipt's cash_collected is the
rider cash truth; the order total alone cannot tell a customer who still
owes money from a rider who came back short.

FLOW:
    rider cash (frozen on the run receipt)
        -> cashier counts what the rider hands over
        -> shortfall against a fully collected receipt is "bridged":
           the customer is settled with an INTERNAL_CREDIT payment and the
           shortfall becomes a RiderRunVariance the manager decides on

DESIGN PRINCIPLES:
- Rider cash is clamped to [0, final total]; the cashier's count can only
  apply up to what the rider still owes for this order
- At most one bridge per receipt (payment ref RIDER-SHORTAGE:RR:{id}),
  at most one variance per receipt
- Re-running a remit on a PAID order changes nothing
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from flask import current_app

from ..extensions import db
from ..models import Order, Payment, RiderRunVariance, RunReceipt
from ..models.states import (
    ORDER_TRANSITIONS,
    SETTLEABLE_ORDER_STATUSES,
    OrderStatus,
    PaymentMethod,
    ReceiptKind,
    VarianceStatus,
    assert_transition,
)
from ..time_utils import utcnow
from ..validation import ConflictError, IntegrityViolation, NotFoundError, ValidationError
from . import lock_service, order_service, receipt_service, shift_service
from .concurrency import get_or_create, run_in_transaction
from .frozen_pricing_service import require_frozen_lines, sum_line_totals
from .money import ZERO, clamp, is_positive, is_settled, money_eq, money_str, non_negative, round2, to_decimal
from .payment_service import (
    MAIN_DELIVERY_REF,
    rider_shortage_ref,
    sum_cash_payments,
    sum_settlement_credits,
    sum_shortage_bridge_payments,
)
from .settlement_service import SettlementRoute, decide_settlement_route


# =============================================================================
# PURE BRIDGE MATH
# =============================================================================

@dataclass(frozen=True)
class RiderCashBridge:
    final_total: Decimal
    rider_cash: Decimal
    already_paid_cash: Decimal
    already_bridged: Decimal
    paid_for_run_before: Decimal
    due_before_run: Decimal
    applied_payment: Decimal
    shortage: Decimal
    should_bridge: bool
    bridge_amount: Decimal
    customer_settled_now: Decimal
    remaining: Decimal

    @property
    def fully_settled(self) -> bool:
        return is_settled(self.remaining)

    def to_dict(self) -> dict:
        return {
            "final_total": money_str(self.final_total),
            "rider_cash": money_str(self.rider_cash),
            "already_paid_cash": money_str(self.already_paid_cash),
            "already_bridged": money_str(self.already_bridged),
            "paid_for_run_before": money_str(self.paid_for_run_before),
            "due_before_run": money_str(self.due_before_run),
            "applied_payment": money_str(self.applied_payment),
            "shortage": money_str(self.shortage),
            "should_bridge": self.should_bridge,
            "bridge_amount": money_str(self.bridge_amount),
            "customer_settled_now": money_str(self.customer_settled_now),
            "remaining": money_str(self.remaining),
        }


def compute_rider_cash_bridge(
    final_total,
    rider_cash,
    already_paid_cash,
    already_bridged,
    cashier_input,
    receipt_id: int | None,
) -> RiderCashBridge:
    """
    Split the cashier's count into what the customer paid and what the
    rider is short.

    already_paid_cash + already_bridged + applied_payment + shortage
    + remaining == final_total whenever prior payments do not exceed it.
    """
    total = round2(non_negative(final_total))
    rider = round2(clamp(to_decimal(rider_cash), ZERO, total))
    paid_cash = round2(non_negative(already_paid_cash))
    bridged = round2(non_negative(already_bridged))

    paid_for_run_before = min(paid_cash, rider)
    due_before_run = round2(non_negative(rider - paid_for_run_before))
    applied = round2(min(non_negative(cashier_input), due_before_run))
    # No receipt means no rider cash truth to be short against
    shortage = round2(non_negative(due_before_run - applied)) if receipt_id is not None else ZERO

    should_bridge = (
        receipt_id is not None
        and money_eq(rider, total)
        and is_positive(shortage)
        and not is_positive(bridged)
    )
    bridge_amount = shortage if should_bridge else ZERO

    settled_now = round2(paid_cash + bridged + applied + shortage)
    remaining = round2(non_negative(total - settled_now))

    return RiderCashBridge(
        final_total=total,
        rider_cash=rider,
        already_paid_cash=paid_cash,
        already_bridged=bridged,
        paid_for_run_before=round2(paid_for_run_before),
        due_before_run=due_before_run,
        applied_payment=applied,
        shortage=shortage,
        should_bridge=should_bridge,
        bridge_amount=bridge_amount,
        customer_settled_now=settled_now,
        remaining=remaining,
    )


# =============================================================================
# RECEIPT BINDING
# =============================================================================

def resolve_run_receipt(order: Order) -> RunReceipt | None:
    """
    The receipt an order settles against: its origin receipt (road sale)
    first, then the PARENT receipt written for it at check-in.
    """
    if order.origin_run_receipt_id:
        receipt = db.session.get(RunReceipt, order.origin_run_receipt_id)
        if receipt is not None:
            return receipt
    q = db.session.query(RunReceipt).filter_by(parent_order_id=order.id, kind=ReceiptKind.PARENT)
    if order.delivery_run_id:
        q = q.filter_by(run_id=order.delivery_run_id)
    return q.order_by(RunReceipt.id.desc()).first()


def _check_binding(order: Order, receipt: RunReceipt | None) -> None:
    if receipt is None or not order.delivery_run_id:
        return
    if receipt.run_id != order.delivery_run_id:
        raise IntegrityViolation(
            "Run receipt belongs to a different delivery run",
            details={"order_id": order.id, "receipt_id": receipt.id, "receipt_run_id": receipt.run_id, "order_run_id": order.delivery_run_id},
        )


def _bridge_inputs(order: Order, cashier_input) -> tuple[RunReceipt | None, RiderCashBridge]:
    receipt = resolve_run_receipt(order)
    _check_binding(order, receipt)

    lines = receipt.lines if receipt is not None and receipt.lines else order.items
    final_total = sum_line_totals(require_frozen_lines(lines))
    # Without a receipt there is no separate rider truth: the rider is
    # assumed to carry the whole order total and no bridge can post.
    rider_cash = receipt.cash_collected if receipt is not None else final_total

    bridge = compute_rider_cash_bridge(
        final_total,
        rider_cash,
        sum_cash_payments(order.payments),
        sum_shortage_bridge_payments(order.payments),
        cashier_input,
        receipt.id if receipt is not None else None,
    )
    return receipt, bridge


def preview_rider_cash(order_id: int, cashier_input=ZERO) -> dict:
    """Read-only bridge computation for the remit screen."""
    order = order_service.get_order(order_id)
    receipt, bridge = _bridge_inputs(order, round2(non_negative(cashier_input)))
    return {
        "order_id": order.id,
        "status": order.status.value,
        "settled_so_far": money_str(sum_settlement_credits(order.payments)),
        "receipt": receipt.to_dict() if receipt is not None else None,
        "bridge": bridge.to_dict(),
    }


# =============================================================================
# REMIT
# =============================================================================

@dataclass
class RemitResult:
    order: Order
    bridge: RiderCashBridge | None
    cash_payment: Payment | None
    bridge_payment: Payment | None
    variance: RiderRunVariance | None
    receipt_no: str | None
    route: SettlementRoute
    noop: bool = False

    def to_dict(self) -> dict:
        return {
            "order": self.order.to_dict(include_lines=True),
            "bridge": self.bridge.to_dict() if self.bridge else None,
            "cash_payment": self.cash_payment.to_dict() if self.cash_payment else None,
            "bridge_payment": self.bridge_payment.to_dict() if self.bridge_payment else None,
            "variance": self.variance.to_dict() if self.variance else None,
            "receipt_no": self.receipt_no,
            "route": self.route.value,
            "noop": self.noop,
        }


def _upsert_shortage_variance(order: Order, receipt: RunReceipt, rider_id: int, bridge: RiderCashBridge) -> RiderRunVariance:
    expected = bridge.rider_cash
    # Only the cash this remit posted; earlier payments are not re-counted
    actual = round2(bridge.applied_payment)
    variance, created = get_or_create(
        RiderRunVariance,
        {"receipt_id": receipt.id},
        {
            "run_id": receipt.run_id,
            "rider_id": rider_id,
            "order_id": order.id,
            "expected": expected,
            "actual": actual,
            "variance": round2(actual - expected),
            "status": VarianceStatus.OPEN,
            "note": f"AUTO: cashier shortage settlement for Order#{order.id}",
        },
    )
    if created:
        return variance
    if variance.run_id != receipt.run_id:
        raise IntegrityViolation(
            "Variance for this receipt is bound to a different run",
            details={"receipt_id": receipt.id, "variance_id": variance.id},
        )
    if variance.status == VarianceStatus.OPEN:
        variance.expected = expected
        variance.actual = actual
        variance.variance = round2(actual - expected)
    return variance


def remit_delivery_order(
    order_id: int,
    cash_given,
    *,
    cashier_id: int,
    shift_id: int | None,
    customer_id: int | None = None,
    print_receipt: bool = False,
    now: datetime | None = None,
) -> RemitResult:
    """
    Record the cash a rider hands over for one delivery order.

    Lock contention here is a 409 rather than a 423: remit screens poll and
    simply retry later.
    """
    cash = round2(to_decimal(cash_given))
    if cash < 0:
        raise ValidationError("cash_given must be >= 0")
    now = now or utcnow()
    actor = str(cashier_id)

    def _op():
        shift_service.require_writable_shift(shift_id, cashier_id)

        current = db.session.get(Order, order_id)
        if current is None:
            raise NotFoundError("Order not found")
        if current.status == OrderStatus.PAID:
            current_app.logger.info("Remit for order %s skipped: already PAID", order_id)
            return RemitResult(
                order=current,
                bridge=None,
                cash_payment=None,
                bridge_payment=None,
                variance=db.session.query(RiderRunVariance).filter_by(order_id=current.id).first(),
                receipt_no=current.receipt_no,
                route=decide_settlement_route(ZERO, print_receipt),
                noop=True,
            )

        order = lock_service.claim_order_lock(
            order_id,
            actor,
            ttl_seconds=lock_service.remit_lock_ttl(),
            statuses=SETTLEABLE_ORDER_STATUSES,
            note="REMIT",
            now=now,
            conflict_cls=ConflictError,
        )
        receipt, bridge = _bridge_inputs(order, cash)

        customer = order_service.effective_customer_id(
            order, customer_id if customer_id is not None else (receipt.customer_id if receipt else None)
        )
        if not bridge.fully_settled and not customer:
            raise ValidationError(
                "Select or create a customer before allowing utang",
                details={"remaining": str(bridge.remaining)},
            )

        rider_id = None
        if bridge.should_bridge:
            rider_id = order.rider_id or receipt.run.rider_id
            if not rider_id:
                raise ValidationError("Rider is required to post a rider shortage")

        order_service.attach_customer(order, customer)

        cash_payment = None
        if is_positive(bridge.applied_payment):
            cash_payment = Payment(
                order_id=order.id,
                method=PaymentMethod.CASH,
                amount=bridge.applied_payment,
                tendered=cash,
                change=round2(non_negative(cash - bridge.applied_payment)),
                ref_no=MAIN_DELIVERY_REF,
                shift_id=shift_id,
                cashier_id=cashier_id,
            )
            db.session.add(cash_payment)

        bridge_payment = None
        variance = None
        if bridge.should_bridge:
            bridge_payment = Payment(
                order_id=order.id,
                method=PaymentMethod.INTERNAL_CREDIT,
                amount=bridge.bridge_amount,
                tendered=bridge.bridge_amount,
                change=ZERO,
                ref_no=rider_shortage_ref(receipt.id),
                shift_id=shift_id,
                cashier_id=cashier_id,
            )
            db.session.add(bridge_payment)
            variance = _upsert_shortage_variance(order, receipt, rider_id, bridge)
            current_app.logger.info(
                "Rider shortage %s bridged for order %s (receipt %s, rider %s)",
                bridge.bridge_amount, order.id, receipt.id, rider_id,
            )

        receipt_no = None
        if bridge.fully_settled:
            assert_transition(ORDER_TRANSITIONS, order.status, OrderStatus.PAID, "Order")
            receipt_no = receipt_service.allocate_receipt_no(now)
            order.receipt_no = receipt_no
            order.status = OrderStatus.PAID
            order.paid_at = now
            order.is_on_credit = False
        elif cash_payment is not None or bridge_payment is not None:
            assert_transition(ORDER_TRANSITIONS, order.status, OrderStatus.PARTIALLY_PAID, "Order")
            order.status = OrderStatus.PARTIALLY_PAID
            order.is_on_credit = True

        lock_service.clear_lock(order)
        db.session.flush()

        return RemitResult(
            order=order,
            bridge=bridge,
            cash_payment=cash_payment,
            bridge_payment=bridge_payment,
            variance=variance,
            receipt_no=receipt_no,
            route=decide_settlement_route(bridge.remaining, print_receipt),
        )

    return run_in_transaction(_op, serializable=True)
