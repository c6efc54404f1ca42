# Overview: Flask API routes for rider variances and rider charges.

# backend/settlepos/routes/variances.py
"""
Rider Variance API Routes

DESIGN:
- Managers decide (CHARGE_RIDER / WAIVE / INFO_ONLY)
- Riders accept their own charges
- Cashiers close decided variances and take charge payments

SECURITY:
- Role checks per action; riders only ever act on their own variances
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..models.states import ChargePaymentMethod, ChargeStatus, VarianceResolution, VarianceStatus
from ..services import variance_service
from ..decorators import require_actor, require_role, ROLE_CASHIER, ROLE_MANAGER, ROLE_RIDER
from ..validation import EngineError, parse_enum, parse_int, parse_money


variances_bp = Blueprint("variances", __name__, url_prefix="/api")


@variances_bp.get("/rider-variances")
@require_actor
def list_variances_route():
    """
    List rider variances.

    Query params:
    - status: OPEN, MANAGER_APPROVED, WAIVED, RIDER_ACCEPTED, CLOSED
    - rider_id, run_id
    Riders only see their own.
    """
    try:
        status = request.args.get("status")
        rider_id = parse_int(request.args.get("rider_id"), "rider_id", allow_none=True)
        if g.actor_role == ROLE_RIDER:
            rider_id = g.actor_id
        rows = variance_service.list_variances(
            status=parse_enum(VarianceStatus, status, "status") if status else None,
            rider_id=rider_id,
            run_id=parse_int(request.args.get("run_id"), "run_id", allow_none=True),
        )
        return jsonify({"variances": [v.to_dict() for v in rows]}), 200

    except EngineError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list variances")
        return jsonify({"error": "Internal server error"}), 500


@variances_bp.get("/rider-variances/<int:variance_id>")
@require_actor
def get_variance_route(variance_id: int):
    """One variance with its charge. Riders only see their own."""
    try:
        variance = variance_service.get_variance(variance_id)
        if g.actor_role == ROLE_RIDER and variance.rider_id != g.actor_id:
            return jsonify({"error": "Variance not found"}), 404
        return jsonify({"variance": variance.to_dict()}), 200

    except EngineError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load variance %s", variance_id)
        return jsonify({"error": "Internal server error"}), 500


@variances_bp.post("/rider-variances/<int:variance_id>/decide")
@require_actor
@require_role(ROLE_MANAGER)
def decide_variance_route(variance_id: int):
    """
    Request body:
    {
        "resolution": "CHARGE_RIDER",
        "note": "short 50 on run 12"   (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        resolution = parse_enum(VarianceResolution, data.get("resolution"), "resolution")
        variance = variance_service.decide_variance(variance_id, resolution, g.actor_id, note=data.get("note"))
        return jsonify({"variance": variance.to_dict()}), 200

    except EngineError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to decide variance")
        return jsonify({"error": "Internal server error"}), 500


@variances_bp.post("/rider-variances/<int:variance_id>/accept")
@require_actor
@require_role(ROLE_RIDER)
def accept_variance_route(variance_id: int):
    try:
        variance = variance_service.accept_variance(variance_id, g.actor_id)
        return jsonify({"variance": variance.to_dict()}), 200

    except EngineError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to accept variance")
        return jsonify({"error": "Internal server error"}), 500


@variances_bp.post("/rider-variances/<int:variance_id>/close")
@require_actor
@require_role(ROLE_CASHIER, ROLE_MANAGER)
def close_variance_route(variance_id: int):
    try:
        variance = variance_service.close_variance(variance_id, g.actor_id)
        return jsonify({"variance": variance.to_dict()}), 200

    except EngineError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to close variance")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# RIDER CHARGES
# =============================================================================

@variances_bp.get("/rider-charges")
@require_actor
def list_charges_route():
    try:
        status = request.args.get("status")
        rider_id = parse_int(request.args.get("rider_id"), "rider_id", allow_none=True)
        if g.actor_role == ROLE_RIDER:
            rider_id = g.actor_id
        charges = variance_service.list_rider_charges(
            rider_id=rider_id,
            status=parse_enum(ChargeStatus, status, "status") if status else None,
        )
        return jsonify({
            "charges": [
                {**c.to_dict(), "balance": str(variance_service.charge_balance(c))} for c in charges
            ]
        }), 200

    except EngineError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list rider charges")
        return jsonify({"error": "Internal server error"}), 500


@variances_bp.post("/rider-charges/<int:charge_id>/payments")
@require_actor
@require_role(ROLE_CASHIER, ROLE_MANAGER)
def pay_charge_route(charge_id: int):
    """
    Request body:
    {
        "amount": "50.00",
        "method": "CASH",        (CASH | PAYROLL_DEDUCTION | ADJUSTMENT)
        "ref_no": "PR-2026-10",  (optional)
        "note": "..."            (optional)
    }
    CASH needs the caller's OPEN shift in X-Shift-Id.
    """
    try:
        data = request.get_json(silent=True) or {}
        payment = variance_service.record_rider_charge_payment(
            charge_id,
            parse_money(data.get("amount"), "amount", allow_zero=False),
            parse_enum(ChargePaymentMethod, data.get("method") or ChargePaymentMethod.CASH.value, "method"),
            cashier_id=g.actor_id,
            shift_id=g.shift_id,
            ref_no=data.get("ref_no"),
            note=data.get("note"),
        )
        return jsonify({"payment": payment.to_dict()}), 201

    except EngineError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record rider charge payment")
        return jsonify({"error": "Internal server error"}), 500
