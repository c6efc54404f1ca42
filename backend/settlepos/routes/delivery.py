# Overview: Flask API routes for rider cash remittance on delivery orders.

# backend/settlepos/routes/delivery.py
"""
Delivery Remit API Routes

WHY: When a rider returns, the cashier records the cash handed over per
order. The preview endpoint shows the bridge math before anything posts.

SECURITY:
- Cashiers and managers only
- Remit requires the caller's own OPEN shift (X-Shift-Id)
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import rider_cash_service
from ..decorators import require_actor, require_role, require_writable_shift, ROLE_CASHIER, ROLE_MANAGER
from ..validation import EngineError, parse_bool, parse_int, parse_money


delivery_bp = Blueprint("delivery", __name__, url_prefix="/api/delivery")


@delivery_bp.get("/orders/<int:order_id>/rider-cash")
@require_actor
@require_role(ROLE_CASHIER, ROLE_MANAGER)
def rider_cash_preview_route(order_id: int):
    """
    Preview the rider cash bridge.

    Query params:
    - cash_given: what the cashier counted so far (optional, default 0)
    """
    try:
        cash = parse_money(request.args.get("cash_given"), "cash_given", allow_none=True) or 0
        return jsonify(rider_cash_service.preview_rider_cash(order_id, cash)), 200

    except EngineError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to preview rider cash")
        return jsonify({"error": "Internal server error"}), 500


@delivery_bp.post("/orders/<int:order_id>/remit")
@require_actor
@require_role(ROLE_CASHIER, ROLE_MANAGER)
@require_writable_shift
def remit_order_route(order_id: int):
    """
    Record rider cash for a delivery order.

    Request body:
    {
        "cash_given": "250.00",
        "customer_id": 7,        (required when a balance remains)
        "print_receipt": true
    }

    Returns:
        200: Posted, or no-op when the order was already PAID
        400: Bad input, customer or rider missing
        404: Order not found
        409: Order settled/voided, drawer locked, or remit in progress
        422: Run receipt bound to a different run
    """
    try:
        data = request.get_json(silent=True) or {}
        cash = parse_money(data.get("cash_given"), "cash_given")

        result = rider_cash_service.remit_delivery_order(
            order_id,
            cash,
            cashier_id=g.actor_id,
            shift_id=g.shift.id,
            customer_id=parse_int(data.get("customer_id"), "customer_id", allow_none=True),
            print_receipt=parse_bool(data.get("print_receipt", False)),
        )
        if not result.noop:
            current_app.logger.info(
                "Order %s remitted by cashier %s: status=%s applied=%s bridged=%s",
                order_id, g.actor_id, result.order.status.value,
                result.bridge.applied_payment, result.bridge.bridge_amount,
            )
        return jsonify(result.to_dict()), 200

    except EngineError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to remit delivery order")
        return jsonify({"error": "Internal server error"}), 500
