from __future__ import annotations

from ..extensions import db
from settlepos.time_utils import to_utc_z
from ..services.money import money_str
from .states import ChargePaymentMethod, ChargeStatus, ReceiptKind, VarianceResolution, VarianceStatus


class DeliveryRun(db.Model):
    """A rider's trip. Receipts hang off it; riders are external actor ids."""
    __tablename__ = "delivery_runs"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    run_code = db.Column(db.String(32), nullable=True, unique=True)
    rider_id = db.Column(db.Integer, nullable=True, index=True)
    status = db.Column(db.String(16), nullable=False, default="DISPATCHED")  # DISPATCHED, CHECKED_IN, CLOSED
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "run_code": self.run_code,
            "rider_id": self.rider_id,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
        }


class RunReceipt(db.Model):
    """
    Frozen snapshot of what a rider sold and collected.

    WHY: cash_collected is the rider cash truth. It is written once at rider
    check-in and never re-derived from catalog prices.
    """
    __tablename__ = "run_receipts"
    __table_args__ = (
        db.UniqueConstraint("run_id", "receipt_key", name="uq_run_receipts_run_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    run_id = db.Column(db.Integer, db.ForeignKey("delivery_runs.id"), nullable=False, index=True)
    kind = db.Column(db.Enum(ReceiptKind, native_enum=False, length=16), nullable=False)
    receipt_key = db.Column(db.String(64), nullable=False)
    parent_order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True)

    cash_collected = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    note = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    run = db.relationship("DeliveryRun", backref=db.backref("receipts", lazy=True))
    lines = db.relationship("RunReceiptLine", backref="receipt", cascade="all, delete-orphan", order_by="RunReceiptLine.id", lazy=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "run_id": self.run_id,
            "kind": self.kind.value,
            "receipt_key": self.receipt_key,
            "parent_order_id": self.parent_order_id,
            "customer_id": self.customer_id,
            "cash_collected": money_str(self.cash_collected),
            "lines": [line.to_dict() for line in self.lines],
        }


class RunReceiptLine(db.Model):
    __tablename__ = "run_receipt_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    receipt_id = db.Column(db.Integer, db.ForeignKey("run_receipts.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    qty = db.Column(db.Numeric(12, 3), nullable=False)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False)
    line_total = db.Column(db.Numeric(12, 2), nullable=True)
    base_unit_price = db.Column(db.Numeric(12, 2), nullable=True)
    discount_amount = db.Column(db.Numeric(12, 2), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "name": self.name,
            "qty": str(self.qty),
            "unit_price": money_str(self.unit_price),
            "line_total": money_str(self.line_total),
            "base_unit_price": money_str(self.base_unit_price),
            "discount_amount": money_str(self.discount_amount),
        }


class RiderRunVariance(db.Model):
    """
    Rider cash variance, at most one per receipt.

    expected: rider cash truth from the receipt
    actual: cash actually posted to the drawer (not the raw tendered input)
    variance: actual - expected (negative means shortage)

    WORKFLOW: OPEN -> manager decides -> rider accepts (charges only) ->
    cashier closes.
    """
    __tablename__ = "rider_run_variances"
    __table_args__ = (
        db.UniqueConstraint("receipt_id", name="uq_rider_run_variances_receipt"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    run_id = db.Column(db.Integer, db.ForeignKey("delivery_runs.id"), nullable=False, index=True)
    rider_id = db.Column(db.Integer, nullable=False, index=True)
    receipt_id = db.Column(db.Integer, db.ForeignKey("run_receipts.id"), nullable=False)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True)

    expected = db.Column(db.Numeric(12, 2), nullable=False)
    actual = db.Column(db.Numeric(12, 2), nullable=False)
    variance = db.Column(db.Numeric(12, 2), nullable=False)

    status = db.Column(db.Enum(VarianceStatus, native_enum=False, length=32), nullable=False, default=VarianceStatus.OPEN, index=True)
    resolution = db.Column(db.Enum(VarianceResolution, native_enum=False, length=32), nullable=True)
    note = db.Column(db.Text, nullable=True)

    manager_approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    manager_approved_by_id = db.Column(db.Integer, nullable=True)
    rider_accepted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rider_accepted_by_id = db.Column(db.Integer, nullable=True)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    resolved_by_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    receipt = db.relationship("RunReceipt")
    charge = db.relationship("RiderCharge", uselist=False, back_populates="variance")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "run_id": self.run_id,
            "rider_id": self.rider_id,
            "receipt_id": self.receipt_id,
            "order_id": self.order_id,
            "expected": money_str(self.expected),
            "actual": money_str(self.actual),
            "variance": money_str(self.variance),
            "status": self.status.value,
            "resolution": self.resolution.value if self.resolution else None,
            "note": self.note,
            "manager_approved_at": to_utc_z(self.manager_approved_at),
            "manager_approved_by_id": self.manager_approved_by_id,
            "rider_accepted_at": to_utc_z(self.rider_accepted_at),
            "rider_accepted_by_id": self.rider_accepted_by_id,
            "resolved_at": to_utc_z(self.resolved_at),
            "resolved_by_id": self.resolved_by_id,
            "charge": self.charge.to_dict() if self.charge else None,
            "created_at": to_utc_z(self.created_at),
        }


class RiderCharge(db.Model):
    """Amount a rider owes for a shortage; exactly one per variance."""
    __tablename__ = "rider_charges"
    __table_args__ = (
        db.UniqueConstraint("variance_id", name="uq_rider_charges_variance"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    variance_id = db.Column(db.Integer, db.ForeignKey("rider_run_variances.id"), nullable=False)
    run_id = db.Column(db.Integer, db.ForeignKey("delivery_runs.id"), nullable=False)
    rider_id = db.Column(db.Integer, nullable=False, index=True)

    amount = db.Column(db.Numeric(12, 2), nullable=False)
    status = db.Column(db.Enum(ChargeStatus, native_enum=False, length=32), nullable=False, default=ChargeStatus.OPEN, index=True)
    note = db.Column(db.Text, nullable=True)
    created_by_id = db.Column(db.Integer, nullable=True)
    settled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    variance = db.relationship("RiderRunVariance", back_populates="charge")
    payments = db.relationship("RiderChargePayment", backref="charge", order_by="RiderChargePayment.id", lazy=True)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "variance_id": self.variance_id,
            "run_id": self.run_id,
            "rider_id": self.rider_id,
            "amount": money_str(self.amount),
            "status": self.status.value,
            "note": self.note,
            "settled_at": to_utc_z(self.settled_at),
            "created_at": to_utc_z(self.created_at),
        }


class RiderChargePayment(db.Model):
    """Append-only settlement of a rider charge (cash, payroll, adjustment)."""
    __tablename__ = "rider_charge_payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    charge_id = db.Column(db.Integer, db.ForeignKey("rider_charges.id"), nullable=False, index=True)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    method = db.Column(db.Enum(ChargePaymentMethod, native_enum=False, length=32), nullable=False)
    ref_no = db.Column(db.String(64), nullable=True)
    note = db.Column(db.Text, nullable=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("cashier_shifts.id"), nullable=True)
    cashier_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "charge_id": self.charge_id,
            "amount": money_str(self.amount),
            "method": self.method.value,
            "ref_no": self.ref_no,
            "note": self.note,
            "shift_id": self.shift_id,
            "cashier_id": self.cashier_id,
            "created_at": to_utc_z(self.created_at),
        }
