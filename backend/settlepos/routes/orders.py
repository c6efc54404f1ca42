# Overview: Flask API routes for counter orders; parses input and returns JSON responses.

# backend/settlepos/routes/orders.py
"""
Counter Order API Routes

WHY: The cashier screen drafts an order, claims it, and settles it with the
cash the customer hands over. Voiding and deleting unpaid slips share the
same lock so nobody voids an order mid-settlement.

DESIGN:
- Lines are frozen at creation; settle never re-prices
- Claim/release expose the TTL lock so the UI can show "in use by"
- Settle returns the routing decision (receipt / acknowledgment / queue)

SECURITY:
- Cashiers and managers create, claim and settle
- Settle requires the caller's own OPEN shift (X-Shift-Id)
- Delete is manager-only
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..models.states import OrderChannel
from ..services import lock_service, order_service, settlement_service
from ..services.concurrency import run_in_transaction
from ..decorators import require_actor, require_role, require_writable_shift, ROLE_CASHIER, ROLE_MANAGER
from ..validation import EngineError, parse_bool, parse_enum, parse_int, parse_money


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


# =============================================================================
# DRAFTING
# =============================================================================

@orders_bp.post("/")
@orders_bp.post("")
@require_actor
@require_role(ROLE_CASHIER, ROLE_MANAGER)
def create_order_route():
    """
    Create an UNPAID order with frozen lines.

    Request body:
    {
        "lines": [{"product_id": 1, "qty": "2", "unit_kind": "PACK"}],
        "customer_id": 7,             (optional)
        "channel": "COUNTER",         (optional, COUNTER | DELIVERY)
        "rider_id": 3,                (delivery only)
        "delivery_run_id": 12,        (delivery only)
        "apply_promotions": true      (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        lines = data.get("lines")
        if not isinstance(lines, list):
            return jsonify({"error": "lines must be a list"}), 400

        order = order_service.create_order(
            lines,
            customer_id=parse_int(data.get("customer_id"), "customer_id", allow_none=True),
            channel=parse_enum(OrderChannel, data.get("channel") or OrderChannel.COUNTER.value, "channel"),
            rider_id=parse_int(data.get("rider_id"), "rider_id", allow_none=True),
            delivery_run_id=parse_int(data.get("delivery_run_id"), "delivery_run_id", allow_none=True),
            apply_promotions=parse_bool(data.get("apply_promotions", True)),
        )
        return jsonify({"order": order.to_dict(include_lines=True)}), 201

    except EngineError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>")
@require_actor
def get_order_route(order_id: int):
    """Order with lines, payments and frozen-total balance."""
    try:
        order = order_service.get_order(order_id)
        return jsonify({
            "order": order.to_dict(include_lines=True),
            "balance": order_service.order_balance(order),
        }), 200

    except EngineError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get order")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# LOCKING
# =============================================================================

@orders_bp.post("/<int:order_id>/claim")
@require_actor
@require_role(ROLE_CASHIER, ROLE_MANAGER)
def claim_order_route(order_id: int):
    """
    Claim the order for the calling cashier.

    Returns:
        200: Claimed (or already held by the caller)
        404: Order not found
        409: Order already settled/voided
        423: Another cashier holds a live lock
    """
    try:
        actor = str(g.actor_id)
        order = run_in_transaction(
            lambda: lock_service.claim_order_lock(order_id, actor, note="CLAIM"),
            serializable=True,
        )
        return jsonify({"order": order.to_dict()}), 200

    except EngineError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to claim order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/release")
@require_actor
@require_role(ROLE_CASHIER, ROLE_MANAGER)
def release_order_route(order_id: int):
    try:
        released = lock_service.release_order_lock(order_id, str(g.actor_id))
        return jsonify({"released": released}), 200

    except Exception:
        current_app.logger.exception("Failed to release order lock")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# SETTLEMENT
# =============================================================================

@orders_bp.post("/<int:order_id>/settle")
@require_actor
@require_role(ROLE_CASHIER, ROLE_MANAGER)
@require_writable_shift
def settle_order_route(order_id: int):
    """
    Take cash for an order.

    Request body:
    {
        "cash_given": "500.00",
        "customer_id": 7,                 (required when a balance remains)
        "release_with_balance": false,
        "release_approved_by": "mgr-17",  (required to release with balance)
        "discount_approved_by": "mgr-17", (required when priced below allowed)
        "print_receipt": true
    }

    Returns:
        200: Settled (PAID or PARTIALLY_PAID) with routing decision
        400: Bad input, missing customer/approval, price violation
        409: Order settled/voided or drawer locked
        422: Stock or price classification problem
        423: Order locked by another cashier
    """
    try:
        data = request.get_json(silent=True) or {}
        cash = parse_money(data.get("cash_given"), "cash_given")

        result = settlement_service.settle_order(
            order_id,
            cash,
            cashier_id=g.actor_id,
            shift_id=g.shift.id,
            customer_id=parse_int(data.get("customer_id"), "customer_id", allow_none=True),
            release_with_balance=parse_bool(data.get("release_with_balance", False)),
            release_approved_by=data.get("release_approved_by"),
            discount_approved_by=data.get("discount_approved_by"),
            print_receipt=parse_bool(data.get("print_receipt", False)),
        )
        current_app.logger.info(
            "Order %s settled by cashier %s: status=%s applied=%s remaining=%s receipt=%s",
            order_id, g.actor_id, result.order.status.value, result.applied, result.remaining, result.receipt_no,
        )
        return jsonify(result.to_dict()), 200

    except EngineError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to settle order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/cancel")
@require_actor
@require_role(ROLE_CASHIER, ROLE_MANAGER)
def cancel_order_route(order_id: int):
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.cancel_order(order_id, str(g.actor_id), note=data.get("note"))
        current_app.logger.info("Order %s cancelled by %s", order_id, g.actor_id)
        return jsonify({"order": order.to_dict()}), 200

    except EngineError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.delete("/<int:order_id>")
@require_actor
@require_role(ROLE_MANAGER)
def delete_order_route(order_id: int):
    try:
        order_service.delete_unpaid_order(order_id, str(g.actor_id))
        return jsonify({"deleted": True}), 200

    except EngineError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete order")
        return jsonify({"error": "Internal server error"}), 500
