"""
Order Drafting and Voiding

WHY: Settlement only trusts frozen lines, so lines must be frozen exactly
once, when the order is created: base price, customer allowed price and
promotion discounts are resolved here and never again.

DESIGN PRINCIPLES:
- Frozen line_total = what the customer owes for the line
- unit_price stays the customer's allowed price; promotions show up as the
  line discount, so the settlement price guard does not mistake them for
  an unapproved markdown
- Cancel and delete are only possible while UNPAID and go through the
  same TTL lock as settlement
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import and_, or_, update

from ..extensions import db
from ..models import Customer, DeliveryRun, Order, OrderItem, Product
from ..models.states import OrderChannel, OrderStatus, UnitKind
from ..time_utils import lock_cutoff, utcnow
from ..validation import ConflictError, LockConflictError, NotFoundError, ValidationError, parse_enum
from . import customer_pricing_service, lock_service, promotions_service
from .concurrency import run_in_transaction
from .frozen_pricing_service import frozen_totals_for_order, require_frozen_lines, sum_line_totals
from .money import ZERO, non_negative, round2, to_decimal
from .payment_service import sum_all_payments
from .pricing_service import evaluate_pricing


def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError("Order not found")
    return order


def create_order(
    lines: list[dict],
    *,
    customer_id: int | None = None,
    channel: OrderChannel = OrderChannel.COUNTER,
    rider_id: int | None = None,
    delivery_run_id: int | None = None,
    apply_promotions: bool = True,
    now: datetime | None = None,
) -> Order:
    """
    Create an UNPAID order with frozen lines.

    lines: [{"product_id": 1, "qty": "2", "unit_kind": "PACK"}, ...]
    """
    now = now or utcnow()
    if not lines:
        raise ValidationError("Order needs at least one line")
    if customer_id is not None and db.session.get(Customer, customer_id) is None:
        raise NotFoundError("Customer not found")
    if delivery_run_id is not None and db.session.get(DeliveryRun, delivery_run_id) is None:
        raise NotFoundError("Delivery run not found")

    drafts = []
    cart = []
    for idx, line in enumerate(lines):
        product = db.session.get(Product, line.get("product_id"))
        if product is None or not product.is_active:
            raise NotFoundError(f"Product {line.get('product_id')} not found")
        qty = to_decimal(line.get("qty"))
        if qty <= 0:
            raise ValidationError(f"{product.name}: qty must be > 0")
        kind = parse_enum(UnitKind, line.get("unit_kind") or UnitKind.PACK.value, "unit_kind")
        if kind == UnitKind.RETAIL and not product.allow_pack_sale:
            raise ValidationError(f"{product.name} is not sold by retail unit")

        base = customer_pricing_service.base_price_for(product, kind)
        if base <= 0:
            raise ValidationError(f"{product.name} has no {kind.value.lower()} price")
        allowed = customer_pricing_service.get_allowed_unit_price(customer_id, product.id, kind, base, now)

        drafts.append((product, qty, kind, base, allowed))
        cart.append(promotions_service.build_cart_item(idx, product, qty, kind, allowed))

    rules = promotions_service.load_active_rules() if apply_promotions else []
    result = evaluate_pricing(cart, rules, promotions_service.customer_context(customer_id), now)

    order = Order(
        channel=channel,
        status=OrderStatus.UNPAID,
        customer_id=customer_id,
        rider_id=rider_id,
        delivery_run_id=delivery_run_id,
    )

    for idx, (product, qty, kind, base, allowed) in enumerate(drafts):
        adjusted = result.item(idx)
        line_total = adjusted.line_total
        order.items.append(OrderItem(
            product_id=product.id,
            name=product.name,
            unit_kind=kind,
            qty=qty,
            unit_price=allowed,
            base_unit_price=base,
            discount_amount=round2(non_negative(base - line_total / qty)),
            line_total=line_total,
        ))

    for free in result.free_items:
        product = db.session.get(Product, free.product_id)
        if product is None:
            continue
        order.items.append(OrderItem(
            product_id=product.id,
            name=free.name or product.name,
            unit_kind=UnitKind(free.unit_kind) if free.unit_kind else UnitKind.PACK,
            qty=free.qty,
            unit_price=free.unit_price,
            base_unit_price=free.unit_price,
            discount_amount=round2(free.unit_price - free.charged_unit_price),
            line_total=free.line_total,
            is_free_item=True,
        ))

    order.subtotal = round2(sum((round2(i.line_total) for i in order.items), ZERO))
    order.total_before_discount = round2(
        sum((round2(to_decimal(i.qty) * to_decimal(i.base_unit_price)) for i in order.items), ZERO)
    )

    db.session.add(order)
    db.session.flush()
    order.order_code = f"ORD-{order.id:06d}"
    db.session.commit()
    return order


def cancel_order(order_id: int, actor: str, *, note: str | None = None, now: datetime | None = None) -> Order:
    """
    Void an UNPAID order.

    One conditional UPDATE: status must still be UNPAID and the lock must be
    free, expired or held by the caller. The lock is cleared in the same
    statement.
    """
    now = now or utcnow()
    ttl = lock_service.order_lock_ttl()
    stmt = (
        update(Order)
        .where(and_(
            Order.id == order_id,
            Order.status == OrderStatus.UNPAID,
            or_(
                Order.locked_at.is_(None),
                Order.locked_at < lock_cutoff(now, ttl),
                Order.locked_by == actor,
            ),
        ))
        .values(
            status=OrderStatus.CANCELLED,
            cancelled_at=now,
            locked_at=None,
            locked_by=None,
            lock_note=note,
            version_id=Order.version_id + 1,
        )
        .execution_options(synchronize_session=False)
    )
    rowcount = db.session.execute(stmt).rowcount
    db.session.commit()

    order = db.session.get(Order, order_id, populate_existing=True)
    if rowcount == 1:
        return order
    if order is None:
        raise NotFoundError("Order not found")
    if order.status != OrderStatus.UNPAID:
        raise ConflictError(
            "Only UNPAID orders can be cancelled",
            details={"order_id": order_id, "status": order.status.value},
        )
    raise LockConflictError("Order is locked by another cashier", details={"order_id": order_id, "locked_by": order.locked_by})


def delete_unpaid_order(order_id: int, actor: str) -> None:
    """Hard-delete an UNPAID slip with its lines and payments."""
    def _op():
        order = lock_service.claim_order_lock(order_id, actor, statuses=(OrderStatus.UNPAID,))
        db.session.delete(order)

    run_in_transaction(_op, serializable=True)


def order_balance(order: Order) -> dict:
    totals = frozen_totals_for_order(order)
    paid = sum_all_payments(order.payments)
    return {
        "totals": totals.to_dict(),
        "paid": str(paid),
        "remaining": str(round2(non_negative(totals.subtotal - paid))),
    }


def attach_customer(order: Order, customer_id: int | None) -> None:
    if customer_id is None:
        return
    if db.session.get(Customer, customer_id) is None:
        raise NotFoundError("Customer not found")
    order.customer_id = customer_id


def effective_customer_id(order: Order, customer_id: int | None) -> int | None:
    return customer_id if customer_id is not None else order.customer_id


def order_total(order: Order) -> Decimal:
    return sum_line_totals(require_frozen_lines(order.items))
