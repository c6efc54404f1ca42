from __future__ import annotations

from ..extensions import db
from settlepos.time_utils import to_utc_z
from ..services.money import money_str
from .states import (
    CashierVarianceResolution,
    CashierVarianceStatus,
    ChargeStatus,
    DrawerTxnType,
    ShiftStatus,
)


class CashierShift(db.Model):
    """
    Cashier shift and its cash drawer.

    LIFECYCLE:
    - PENDING_ACCEPT: manager handed over an opening float
    - OPEN: cashier recounted and accepted; drawer is writable
    - OPENING_DISPUTED: cashier disagreed with the float; locked until resent
    - SUBMITTED: cashier counted the drawer at close; locked
    - FINAL_CLOSED: manager recount and audit done (terminal)
    """
    __tablename__ = "cashier_shifts"
    __table_args__ = (
        db.Index("ix_cashier_shifts_cashier_status", "cashier_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cashier_id = db.Column(db.Integer, nullable=False)
    device_id = db.Column(db.String(64), nullable=True)
    opened_by_manager_id = db.Column(db.Integer, nullable=True)

    status = db.Column(db.Enum(ShiftStatus, native_enum=False, length=32), nullable=False, default=ShiftStatus.PENDING_ACCEPT, index=True)

    opening_float = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    opening_counted = db.Column(db.Numeric(12, 2), nullable=True)
    opening_verified_at = db.Column(db.DateTime(timezone=True), nullable=True)
    opening_verified_by_id = db.Column(db.Integer, nullable=True)
    opening_dispute_note = db.Column(db.Text, nullable=True)

    closing_total = db.Column(db.Numeric(12, 2), nullable=True)
    closing_denoms = db.Column(db.JSON, nullable=True)
    cashier_submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    final_closing_total = db.Column(db.Numeric(12, 2), nullable=True)
    final_closed_by_id = db.Column(db.Integer, nullable=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    notes = db.Column(db.Text, nullable=True)
    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cashier_id": self.cashier_id,
            "device_id": self.device_id,
            "opened_by_manager_id": self.opened_by_manager_id,
            "status": self.status.value,
            "opening_float": money_str(self.opening_float),
            "opening_counted": money_str(self.opening_counted),
            "opening_verified_at": to_utc_z(self.opening_verified_at),
            "opening_dispute_note": self.opening_dispute_note,
            "closing_total": money_str(self.closing_total),
            "closing_denoms": self.closing_denoms,
            "cashier_submitted_at": to_utc_z(self.cashier_submitted_at),
            "final_closing_total": money_str(self.final_closing_total),
            "final_closed_by_id": self.final_closed_by_id,
            "closed_at": to_utc_z(self.closed_at),
            "notes": self.notes,
            "opened_at": to_utc_z(self.opened_at),
            "version_id": self.version_id,
        }


class CashDrawerTxn(db.Model):
    """Append-only drawer movement (deposit, withdrawal, drop)."""
    __tablename__ = "cash_drawer_txns"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("cashier_shifts.id"), nullable=False, index=True)
    type = db.Column(db.Enum(DrawerTxnType, native_enum=False, length=16), nullable=False)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    note = db.Column(db.Text, nullable=True)
    created_by_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shift_id": self.shift_id,
            "type": self.type.value,
            "amount": money_str(self.amount),
            "note": self.note,
            "created_by_id": self.created_by_id,
            "created_at": to_utc_z(self.created_at),
        }


class CustomerArPayment(db.Model):
    """Standalone cash payment against a customer's running balance."""
    __tablename__ = "customer_ar_payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("cashier_shifts.id"), nullable=False, index=True)
    cashier_id = db.Column(db.Integer, nullable=True)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    note = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "shift_id": self.shift_id,
            "cashier_id": self.cashier_id,
            "amount": money_str(self.amount),
            "note": self.note,
            "created_at": to_utc_z(self.created_at),
        }


class CashierShiftVariance(db.Model):
    """Manager's record of a drawer mismatch found at final close; one per shift."""
    __tablename__ = "cashier_shift_variances"
    __table_args__ = (
        db.UniqueConstraint("shift_id", name="uq_cashier_shift_variances_shift"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("cashier_shifts.id"), nullable=False)
    cashier_id = db.Column(db.Integer, nullable=False, index=True)

    expected = db.Column(db.Numeric(12, 2), nullable=False)
    counted = db.Column(db.Numeric(12, 2), nullable=False)
    variance = db.Column(db.Numeric(12, 2), nullable=False)

    status = db.Column(db.Enum(CashierVarianceStatus, native_enum=False, length=32), nullable=False, default=CashierVarianceStatus.OPEN)
    resolution = db.Column(db.Enum(CashierVarianceResolution, native_enum=False, length=32), nullable=True)
    paper_ref_no = db.Column(db.String(64), nullable=True)
    note = db.Column(db.Text, nullable=True)

    manager_approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    manager_approved_by_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    charge = db.relationship("CashierCharge", uselist=False, backref="variance")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shift_id": self.shift_id,
            "cashier_id": self.cashier_id,
            "expected": money_str(self.expected),
            "counted": money_str(self.counted),
            "variance": money_str(self.variance),
            "status": self.status.value,
            "resolution": self.resolution.value if self.resolution else None,
            "paper_ref_no": self.paper_ref_no,
            "note": self.note,
            "manager_approved_at": to_utc_z(self.manager_approved_at),
            "manager_approved_by_id": self.manager_approved_by_id,
            "charge": self.charge.to_dict() if self.charge else None,
        }


class CashierCharge(db.Model):
    """Shortage charged to the cashier; one per shift variance."""
    __tablename__ = "cashier_charges"
    __table_args__ = (
        db.UniqueConstraint("variance_id", name="uq_cashier_charges_variance"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    variance_id = db.Column(db.Integer, db.ForeignKey("cashier_shift_variances.id"), nullable=False)
    shift_id = db.Column(db.Integer, db.ForeignKey("cashier_shifts.id"), nullable=False)
    cashier_id = db.Column(db.Integer, nullable=False, index=True)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    status = db.Column(db.Enum(ChargeStatus, native_enum=False, length=32), nullable=False, default=ChargeStatus.OPEN)
    note = db.Column(db.Text, nullable=True)
    created_by_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "variance_id": self.variance_id,
            "shift_id": self.shift_id,
            "cashier_id": self.cashier_id,
            "amount": money_str(self.amount),
            "status": self.status.value,
            "note": self.note,
        }
