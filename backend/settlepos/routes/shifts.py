# Overview: Flask API routes for cashier shifts and drawer movements.

# backend/settlepos/routes/shifts.py
"""
Cashier Shift API Routes

WHY: Drawer accountability. Managers open and audit shifts; cashiers
verify the float, move cash, and submit their count.

DESIGN:
- Shift lifecycle: PENDING_ACCEPT -> OPEN -> SUBMITTED -> FINAL_CLOSED
  (with a dispute loop back through the manager before OPEN)
- Drawer rows are append-only
- Expected drawer cash is always recomputed server-side

SECURITY:
- Managers: open, resend, final close
- Cashiers: accept/dispute their own float, drawer txns, submit count
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..models.states import CashierVarianceResolution, DrawerTxnType, ShiftStatus
from ..services import shift_service
from ..decorators import require_actor, require_role, is_manager, ROLE_CASHIER, ROLE_MANAGER
from ..validation import EngineError, NotFoundError, parse_enum, parse_int, parse_money, require_fields


shifts_bp = Blueprint("shifts", __name__, url_prefix="/api/shifts")


# =============================================================================
# OPENING (Manager hands over the float)
# =============================================================================

@shifts_bp.post("/")
@shifts_bp.post("")
@require_actor
@require_role(ROLE_MANAGER)
def open_shift_route():
    """
    Request body:
    {
        "cashier_id": 4,
        "opening_float": "2000.00",
        "device_id": "TILL-1"   (optional)
    }

    Returns 201 for a new shift, 200 with the existing one when the cashier
    already has an active shift.
    """
    try:
        data = require_fields(request.get_json(silent=True), "cashier_id", "opening_float")
        shift, created = shift_service.open_shift(
            parse_int(data.get("cashier_id"), "cashier_id"),
            parse_money(data.get("opening_float"), "opening_float"),
            g.actor_id,
            device_id=data.get("device_id"),
        )
        return jsonify({"shift": shift.to_dict(), "created": created}), 201 if created else 200

    except EngineError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to open shift")
        return jsonify({"error": "Internal server error"}), 500


@shifts_bp.get("/")
@shifts_bp.get("")
@require_actor
def list_shifts_route():
    """Managers see every shift; cashiers see their own."""
    try:
        status = request.args.get("status")
        cashier_id = parse_int(request.args.get("cashier_id"), "cashier_id", allow_none=True)
        if not is_manager():
            cashier_id = g.actor_id
        shifts = shift_service.list_shifts(
            status=parse_enum(ShiftStatus, status, "status") if status else None,
            cashier_id=cashier_id,
            limit=request.args.get("limit", 50, type=int),
        )
        return jsonify({"shifts": [s.to_dict() for s in shifts]}), 200

    except EngineError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list shifts")
        return jsonify({"error": "Internal server error"}), 500


@shifts_bp.get("/current")
@require_actor
@require_role(ROLE_CASHIER, ROLE_MANAGER)
def current_shift_route():
    try:
        shift = shift_service.get_active_shift(g.actor_id)
        if shift is None:
            raise NotFoundError("No active shift")
        writable = shift_service.get_writable_shift(g.actor_id, shift.id) is not None
        return jsonify({"shift": shift.to_dict(), "writable": writable}), 200

    except EngineError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get current shift")
        return jsonify({"error": "Internal server error"}), 500


@shifts_bp.post("/<int:shift_id>/resend")
@require_actor
@require_role(ROLE_MANAGER)
def resend_opening_route(shift_id: int):
    try:
        data = request.get_json(silent=True) or {}
        shift = shift_service.resend_opening(
            shift_id,
            g.actor_id,
            opening_float=parse_money(data.get("opening_float"), "opening_float", allow_none=True),
        )
        return jsonify({"shift": shift.to_dict()}), 200

    except EngineError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to resend opening float")
        return jsonify({"error": "Internal server error"}), 500


@shifts_bp.post("/<int:shift_id>/accept")
@require_actor
@require_role(ROLE_CASHIER)
def accept_opening_route(shift_id: int):
    try:
        data = require_fields(request.get_json(silent=True), "counted")
        shift = shift_service.accept_opening(shift_id, g.actor_id, parse_money(data.get("counted"), "counted"))
        return jsonify({"shift": shift.to_dict()}), 200

    except EngineError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to accept opening float")
        return jsonify({"error": "Internal server error"}), 500


@shifts_bp.post("/<int:shift_id>/dispute")
@require_actor
@require_role(ROLE_CASHIER)
def dispute_opening_route(shift_id: int):
    try:
        data = require_fields(request.get_json(silent=True), "counted")
        shift = shift_service.dispute_opening(
            shift_id, g.actor_id, parse_money(data.get("counted"), "counted"), data.get("note")
        )
        return jsonify({"shift": shift.to_dict()}), 200

    except EngineError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to dispute opening float")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# DRAWER
# =============================================================================

@shifts_bp.get("/<int:shift_id>/drawer")
@require_actor
@require_role(ROLE_CASHIER, ROLE_MANAGER)
def drawer_snapshot_route(shift_id: int):
    try:
        return jsonify({"drawer": shift_service.drawer_snapshot(shift_id).to_dict()}), 200

    except EngineError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to compute drawer snapshot")
        return jsonify({"error": "Internal server error"}), 500


@shifts_bp.post("/<int:shift_id>/drawer-txns")
@require_actor
@require_role(ROLE_CASHIER)
def drawer_txn_route(shift_id: int):
    """
    Request body:
    {
        "type": "CASH_OUT",   (CASH_IN | CASH_OUT | DROP)
        "amount": "500.00",
        "note": "change fund to safe"
    }
    """
    try:
        data = require_fields(request.get_json(silent=True), "type", "amount")
        txn = shift_service.record_drawer_txn(
            shift_id,
            g.actor_id,
            parse_enum(DrawerTxnType, data.get("type"), "type"),
            parse_money(data.get("amount"), "amount", allow_zero=False),
            note=data.get("note"),
        )
        return jsonify({"txn": txn.to_dict()}), 201

    except EngineError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record drawer transaction")
        return jsonify({"error": "Internal server error"}), 500


@shifts_bp.post("/<int:shift_id>/ar-payments")
@require_actor
@require_role(ROLE_CASHIER)
def ar_payment_route(shift_id: int):
    """Cash received against a customer's running balance."""
    try:
        data = require_fields(request.get_json(silent=True), "customer_id", "amount")
        row = shift_service.record_ar_payment(
            parse_int(data.get("customer_id"), "customer_id"),
            parse_money(data.get("amount"), "amount", allow_zero=False),
            shift_id,
            g.actor_id,
            note=data.get("note"),
        )
        return jsonify({"payment": row.to_dict()}), 201

    except EngineError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record A/R payment")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# CLOSING
# =============================================================================

@shifts_bp.post("/<int:shift_id>/submit")
@require_actor
@require_role(ROLE_CASHIER)
def submit_count_route(shift_id: int):
    """
    Request body (either a total or a denomination breakdown):
    {
        "counted": "2450.00",
        "denoms": {"bills": {"1000": 2, "200": 2}, "coins": {"5": 10}},
        "notes": "..."
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        counted = parse_money(data.get("counted"), "counted", allow_none=True)
        shift, snapshot = shift_service.submit_closing_count(
            shift_id,
            g.actor_id,
            counted=counted,
            denoms=data.get("denoms"),
            notes=data.get("notes"),
        )
        return jsonify({
            "shift": shift.to_dict(),
            "drawer": snapshot.to_dict(),
            "difference": str(shift.closing_total - snapshot.expected),
        }), 200

    except EngineError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to submit closing count")
        return jsonify({"error": "Internal server error"}), 500


@shifts_bp.post("/<int:shift_id>/close")
@require_actor
@require_role(ROLE_MANAGER)
def final_close_route(shift_id: int):
    """
    Manager recount and audit.

    Request body:
    {
        "manager_counted": "2400.00",
        "resolution": "CHARGE_CASHIER",  (required for a shortage)
        "paper_ref_no": "VS-0012",       (required for a shortage)
        "note": "..."
    }
    """
    try:
        data = require_fields(request.get_json(silent=True), "manager_counted")
        resolution = data.get("resolution")
        shift, variance = shift_service.final_close_shift(
            shift_id,
            g.actor_id,
            parse_money(data.get("manager_counted"), "manager_counted"),
            resolution=parse_enum(CashierVarianceResolution, resolution, "resolution") if resolution else None,
            paper_ref_no=data.get("paper_ref_no"),
            note=data.get("note"),
        )
        current_app.logger.info(
            "Shift %s final-closed by manager %s (variance=%s)",
            shift_id, g.actor_id, variance.variance if variance else "0.00",
        )
        return jsonify({
            "shift": shift.to_dict(),
            "variance": variance.to_dict() if variance else None,
        }), 200

    except EngineError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to final-close shift")
        return jsonify({"error": "Internal server error"}), 500
