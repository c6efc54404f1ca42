"""
Counter Order Settlement

WHY: Settlement turns a frozen order into money and stock facts. Payment,
stock deduction, price audit, status change and receipt number must land
together or not at all; a cashier should never see a payment without its
deduction or a receipt number without a PAID order.

SEQUENCE (one serializable transaction):
1. Reject non-positive cash; require an OPEN shift; win the TTL lock
2. already paid = sum of payments; remaining = total - (paid + cash)
3. Remaining balance needs a customer; releasing goods with a balance
   needs a manager approval
4. Price guard: charged below allowed needs a manager approval
5. Inventory plan: deduct only when fully paid or released now
6. Customer link, payment, stock, per-line price audit, PAID with receipt
   number or PARTIALLY_PAID on credit, lock cleared
7. Routing decision for the caller (receipt / acknowledgment / queue)
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from ..extensions import db
from ..models import Order, OrderItem, Payment
from ..models.states import ORDER_TRANSITIONS, OrderChannel, OrderStatus, PaymentMethod, PricePolicy, UnitKind, assert_transition
from ..time_utils import utcnow
from ..validation import ConflictError, IntegrityViolation, PriceViolationError, ValidationError
from . import customer_pricing_service, lock_service, order_service, receipt_service, shift_service
from .concurrency import run_in_transaction
from .frozen_pricing_service import require_frozen_lines, sum_line_totals
from .inventory_service import apply_stock_deltas, classify_unit_kind, nearest_unit_kind, plan_stock_deductions
from .money import PRICE_EPS, is_settled, non_negative, round2
from .payment_service import sum_all_payments

# |allowed - base| within this is recorded as plain base pricing
BASE_POLICY_EPS = Decimal("0.009")


class SettlementRoute(str, enum.Enum):
    OFFICIAL_RECEIPT = "OFFICIAL_RECEIPT"
    ACKNOWLEDGMENT = "ACKNOWLEDGMENT"
    WORK_QUEUE = "WORK_QUEUE"


def decide_settlement_route(remaining, print_requested: bool) -> SettlementRoute:
    if not print_requested:
        return SettlementRoute.WORK_QUEUE
    if is_settled(remaining):
        return SettlementRoute.OFFICIAL_RECEIPT
    return SettlementRoute.ACKNOWLEDGMENT


# =============================================================================
# PRICE GUARD
# =============================================================================

@dataclass(frozen=True)
class LinePriceCheck:
    item_id: int
    product_id: int
    name: str
    unit_price: Decimal
    base_unit_price: Decimal
    allowed_unit_price: Decimal
    unit_kind: UnitKind | None
    matched: bool

    @property
    def below_allowed(self) -> bool:
        return self.unit_price + PRICE_EPS < self.allowed_unit_price

    @property
    def price_policy(self) -> PricePolicy:
        if abs(self.allowed_unit_price - self.base_unit_price) <= BASE_POLICY_EPS:
            return PricePolicy.BASE
        return PricePolicy.PER_ITEM

    def violation(self) -> dict:
        return {
            "item_id": self.item_id,
            "product_id": self.product_id,
            "name": self.name,
            "unit_kind": self.unit_kind.value if self.unit_kind else None,
            "allowed": str(self.allowed_unit_price),
            "actual": str(self.unit_price),
        }


def check_line_price(item: OrderItem, customer_id: int | None, now: datetime | None = None) -> LinePriceCheck:
    """
    Work out which unit kind a line was sold in and what it was allowed to
    cost. A stored unit kind wins; otherwise the charged price is matched
    against the product's base and customer prices.
    """
    product = item.product
    unit_price = round2(item.unit_price)
    allowed_by_kind = customer_pricing_service.allowed_prices_for_product(customer_id, product, now)

    if item.unit_kind is not None:
        kind, matched = item.unit_kind, True
    else:
        kind = classify_unit_kind(
            unit_price,
            retail_price=product.retail_price,
            pack_price=product.pack_price,
            allow_retail=product.allow_pack_sale,
            retail_allowed=allowed_by_kind.get(UnitKind.RETAIL),
            pack_allowed=allowed_by_kind.get(UnitKind.PACK),
        )
        matched = kind is not None
        if kind is None:
            kind = nearest_unit_kind(
                unit_price,
                retail_price=product.retail_price,
                pack_price=product.pack_price,
                allow_retail=product.allow_pack_sale,
            )

    if kind is None:
        # Product has no price at all; nothing to guard against
        base = round2(item.base_unit_price if item.base_unit_price is not None else unit_price)
        allowed = base
    else:
        base = customer_pricing_service.base_price_for(product, kind)
        allowed = allowed_by_kind.get(kind)
        if allowed is None:
            allowed = customer_pricing_service.get_allowed_unit_price(customer_id, product.id, kind, base, now)

    return LinePriceCheck(
        item_id=item.id,
        product_id=product.id,
        name=item.name,
        unit_price=unit_price,
        base_unit_price=base,
        allowed_unit_price=allowed,
        unit_kind=kind,
        matched=matched,
    )


def price_violation_error(violations: list[LinePriceCheck]) -> PriceViolationError:
    bullets = "\n".join(
        f"• {v.name}: allowed {v.allowed_unit_price}, actual {v.unit_price}" for v in violations
    )
    return PriceViolationError(
        f"Price below allowed. Manager approval required.\n{bullets}",
        details={"violations": [v.violation() for v in violations]},
    )


# =============================================================================
# SETTLEMENT
# =============================================================================

@dataclass
class SettlementResult:
    order: Order
    payment: Payment | None
    total: Decimal
    already_paid: Decimal
    applied: Decimal
    change: Decimal
    remaining: Decimal
    receipt_no: str | None
    route: SettlementRoute
    stock_deducted: bool

    def to_dict(self) -> dict:
        return {
            "order": self.order.to_dict(include_lines=True),
            "payment": self.payment.to_dict() if self.payment else None,
            "total": str(self.total),
            "already_paid": str(self.already_paid),
            "applied": str(self.applied),
            "change": str(self.change),
            "remaining": str(self.remaining),
            "receipt_no": self.receipt_no,
            "route": self.route.value,
            "stock_deducted": self.stock_deducted,
        }


def settle_order(
    order_id: int,
    cash_given,
    *,
    cashier_id: int,
    shift_id: int | None,
    customer_id: int | None = None,
    release_with_balance: bool = False,
    release_approved_by: str | None = None,
    discount_approved_by: str | None = None,
    print_receipt: bool = False,
    now: datetime | None = None,
) -> SettlementResult:
    """
    Take cash for a counter order.

    Raises ValidationError, PriceViolationError, ConflictError,
    LockConflictError or IntegrityViolation; in every error case nothing
    from this attempt is persisted.
    """
    cash = round2(cash_given)
    if cash <= 0:
        raise ValidationError("Enter cash > 0. For full utang, use Record as Credit")
    release_approved_by = (release_approved_by or "").strip() or None
    discount_approved_by = (discount_approved_by or "").strip() or None
    now = now or utcnow()
    actor = str(cashier_id)

    def _op():
        shift_service.require_writable_shift(shift_id, cashier_id)
        order = lock_service.claim_order_lock(
            order_id, actor, ttl_seconds=lock_service.order_lock_ttl(), note="SETTLE", now=now
        )
        if order.channel == OrderChannel.DELIVERY:
            raise ConflictError("Delivery orders are settled through rider remit", details={"order_id": order_id})

        lines = require_frozen_lines(order.items)
        total = sum_line_totals(lines)
        already_paid = sum_all_payments(order.payments)
        due = round2(non_negative(total - already_paid))
        applied = min(cash, due)
        change = round2(cash - applied)
        remaining = round2(non_negative(total - (already_paid + cash)))
        fully_paid = is_settled(remaining)

        customer = order_service.effective_customer_id(order, customer_id)
        if not fully_paid and not customer:
            raise ValidationError(
                "Select or create a customer before allowing utang",
                details={"remaining": str(remaining)},
            )
        if not fully_paid and release_with_balance and not release_approved_by:
            raise ValidationError("Manager approval is required to release goods with a balance")

        checks = [check_line_price(item, customer, now) for item in lines]
        violations = [c for c in checks if c.below_allowed]
        if violations and not discount_approved_by:
            raise price_violation_error(violations)

        release_now = release_with_balance and not fully_paid and order.released_at is None
        deduct_now = order.stock_deducted_at is None and (fully_paid or release_now)
        deltas = {}
        if deduct_now:
            approved = {c.item_id for c in violations}
            plan = []
            for item, check in zip(lines, checks):
                kind = check.unit_kind if (check.matched or check.item_id in approved) else None
                plan.append((item.product, item.qty, kind, item.name))
            deltas, errors = plan_stock_deductions(plan)
            if errors:
                raise IntegrityViolation("Inventory check failed", details={"errors": errors})

        order_service.attach_customer(order, customer_id)

        payment = None
        if applied > 0:
            payment = Payment(
                order_id=order.id,
                method=PaymentMethod.CASH,
                amount=applied,
                tendered=cash,
                change=change,
                shift_id=shift_id,
                cashier_id=cashier_id,
            )
            db.session.add(payment)

        if deduct_now:
            apply_stock_deltas(order.id, deltas)
            order.stock_deducted_at = now

        for item, check in zip(lines, checks):
            item.allowed_unit_price = check.allowed_unit_price
            item.price_policy = check.price_policy
            if check.below_allowed:
                item.discount_approved_by = discount_approved_by

        receipt_no = None
        if fully_paid:
            assert_transition(ORDER_TRANSITIONS, order.status, OrderStatus.PAID, "Order")
            receipt_no = receipt_service.allocate_receipt_no(now)
            order.receipt_no = receipt_no
            order.status = OrderStatus.PAID
            order.paid_at = now
            order.is_on_credit = False
        else:
            assert_transition(ORDER_TRANSITIONS, order.status, OrderStatus.PARTIALLY_PAID, "Order")
            order.status = OrderStatus.PARTIALLY_PAID
            order.is_on_credit = True

        if release_now:
            order.release_with_balance = True
            order.release_approved_by = release_approved_by
            order.released_at = now

        lock_service.clear_lock(order)
        db.session.flush()

        return SettlementResult(
            order=order,
            payment=payment,
            total=total,
            already_paid=already_paid,
            applied=applied,
            change=change,
            remaining=remaining,
            receipt_no=receipt_no,
            route=decide_settlement_route(remaining, print_receipt),
            stock_deducted=deduct_now,
        )

    return run_in_transaction(_op, serializable=True)
