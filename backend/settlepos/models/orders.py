from __future__ import annotations

from sqlalchemy import text

from ..extensions import db
from settlepos.time_utils import to_utc_z
from ..services.money import money_str
from .states import OrderChannel, OrderStatus, PaymentMethod, PricePolicy, UnitKind


class Order(db.Model):
    """
    Order header owned by the settlement engine.

    LIFECYCLE:
    - UNPAID: frozen lines exist, nothing collected yet
    - PARTIALLY_PAID: some money in, balance carried by a customer (utang)
    - PAID: fully settled, receipt number assigned (terminal)
    - CANCELLED: voided before any payment (terminal)

    LOCKING: locked_at/locked_by form a TTL claim. They are only written by
    a single conditional UPDATE in lock_service, never read-then-written.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_status_locked", "status", "locked_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_code = db.Column(db.String(32), nullable=True, unique=True)
    channel = db.Column(db.Enum(OrderChannel, native_enum=False, length=16), nullable=False, default=OrderChannel.COUNTER)
    status = db.Column(db.Enum(OrderStatus, native_enum=False, length=16), nullable=False, default=OrderStatus.UNPAID, index=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)

    # Header cache of the frozen lines (lines remain the source of truth)
    subtotal = db.Column(db.Numeric(12, 2), nullable=True)
    total_before_discount = db.Column(db.Numeric(12, 2), nullable=True)

    is_on_credit = db.Column(db.Boolean, nullable=False, default=False)

    # TTL lock
    locked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    locked_by = db.Column(db.String(64), nullable=True)
    lock_note = db.Column(db.String(255), nullable=True)

    # Release goods while a balance remains (manager approved)
    release_with_balance = db.Column(db.Boolean, nullable=False, default=False)
    release_approved_by = db.Column(db.String(64), nullable=True)
    released_at = db.Column(db.DateTime(timezone=True), nullable=True)
    stock_deducted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    receipt_no = db.Column(db.String(32), nullable=True, unique=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Delivery linkage
    rider_id = db.Column(db.Integer, nullable=True, index=True)
    delivery_run_id = db.Column(db.Integer, db.ForeignKey("delivery_runs.id"), nullable=True, index=True)
    # No FK: run_receipts already points back at orders
    origin_run_receipt_id = db.Column(db.Integer, nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship("OrderItem", backref="order", cascade="all, delete-orphan", order_by="OrderItem.id", lazy=True)
    payments = db.relationship("Payment", backref="order", cascade="all, delete-orphan", order_by="Payment.id", lazy=True)
    customer = db.relationship("Customer", backref=db.backref("orders", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "order_code": self.order_code,
            "channel": self.channel.value,
            "status": self.status.value,
            "customer_id": self.customer_id,
            "subtotal": money_str(self.subtotal),
            "total_before_discount": money_str(self.total_before_discount),
            "is_on_credit": self.is_on_credit,
            "locked_at": to_utc_z(self.locked_at),
            "locked_by": self.locked_by,
            "release_with_balance": self.release_with_balance,
            "release_approved_by": self.release_approved_by,
            "released_at": to_utc_z(self.released_at),
            "receipt_no": self.receipt_no,
            "paid_at": to_utc_z(self.paid_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "rider_id": self.rider_id,
            "delivery_run_id": self.delivery_run_id,
            "origin_run_receipt_id": self.origin_run_receipt_id,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }
        if include_lines:
            data["items"] = [i.to_dict() for i in self.items]
            data["payments"] = [p.to_dict() for p in self.payments]
        return data


class OrderItem(db.Model):
    """
    Frozen order line.

    IMMUTABLE MONEY: once line_total is set it is the settlement truth and
    is never recomputed from catalog prices. Only the price-audit fields
    (allowed_unit_price, price_policy, discount_approved_by) are written
    later, by the settlement that checks them.
    """
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)

    # Explicit unit kind when the line was frozen with one; otherwise the
    # settlement infers it from the charged price.
    unit_kind = db.Column(db.Enum(UnitKind, native_enum=False, length=16), nullable=True)

    qty = db.Column(db.Numeric(12, 3), nullable=False)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False)
    line_total = db.Column(db.Numeric(12, 2), nullable=True)
    base_unit_price = db.Column(db.Numeric(12, 2), nullable=True)
    discount_amount = db.Column(db.Numeric(12, 2), nullable=True)  # per unit
    is_free_item = db.Column(db.Boolean, nullable=False, default=False)

    # Price audit
    allowed_unit_price = db.Column(db.Numeric(12, 2), nullable=True)
    price_policy = db.Column(db.Enum(PricePolicy, native_enum=False, length=16), nullable=True)
    discount_approved_by = db.Column(db.String(64), nullable=True)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "name": self.name,
            "unit_kind": self.unit_kind.value if self.unit_kind else None,
            "qty": str(self.qty),
            "unit_price": money_str(self.unit_price),
            "line_total": money_str(self.line_total),
            "base_unit_price": money_str(self.base_unit_price),
            "discount_amount": money_str(self.discount_amount),
            "is_free_item": self.is_free_item,
            "allowed_unit_price": money_str(self.allowed_unit_price),
            "price_policy": self.price_policy.value if self.price_policy else None,
            "discount_approved_by": self.discount_approved_by,
        }


class Payment(db.Model):
    """
    Immutable payment row.

    ref_no doubles as a classification tag: rider-shortage bridge entries use
    the RIDER-SHORTAGE:RR:{receipt_id} key, which the partial unique index
    below makes idempotent per receipt.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.Index(
            "uq_payments_shortage_ref",
            "ref_no",
            unique=True,
            sqlite_where=text("ref_no LIKE 'RIDER-SHORTAGE:%'"),
            postgresql_where=text("ref_no LIKE 'RIDER-SHORTAGE:%'"),
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    method = db.Column(db.Enum(PaymentMethod, native_enum=False, length=32), nullable=False)
    amount = db.Column(db.Numeric(12, 2), nullable=False)

    tendered = db.Column(db.Numeric(12, 2), nullable=True)
    change = db.Column(db.Numeric(12, 2), nullable=True)

    ref_no = db.Column(db.String(64), nullable=True, index=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("cashier_shifts.id"), nullable=True, index=True)
    cashier_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "method": self.method.value,
            "amount": money_str(self.amount),
            "tendered": money_str(self.tendered),
            "change": money_str(self.change),
            "ref_no": self.ref_no,
            "shift_id": self.shift_id,
            "cashier_id": self.cashier_id,
            "created_at": to_utc_z(self.created_at),
        }


class ReceiptCounter(db.Model):
    """
    Singleton sequence for official receipt numbers.

    WHY: Receipt numbers must be gap-free and strictly increasing. The
    settlement increments this row with an atomic UPDATE inside the same
    transaction that marks the order PAID.
    """
    __tablename__ = "receipt_counters"

    id = db.Column(db.Integer, primary_key=True)  # always 1
    last_seq = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
