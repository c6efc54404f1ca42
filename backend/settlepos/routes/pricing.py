from __future__ import annotations

from flask import Blueprint, jsonify, request

from ..decorators import require_actor, require_role, ROLE_CASHIER, ROLE_MANAGER
from ..extensions import db
from ..models import Product
from ..models.states import PriceMode, UnitKind
from ..services import customer_pricing_service, promotions_service
from ..time_utils import parse_iso_datetime
from ..validation import NotFoundError, parse_enum, parse_int, require_fields

pricing_bp = Blueprint("pricing", __name__, url_prefix="/api/pricing")


@pricing_bp.route("/quote", methods=["POST"])
@require_actor
@require_role(ROLE_CASHIER, ROLE_MANAGER)
def quote():
    data = require_fields(request.get_json(silent=True), "lines")
    customer_id = parse_int(data.get("customer_id"), "customer_id", allow_none=True)
    result = promotions_service.quote_cart(customer_id, data["lines"])
    return jsonify(result.to_dict())


@pricing_bp.route("/allowed", methods=["GET"])
@require_actor
def allowed_price():
    product_id = parse_int(request.args.get("product_id"), "product_id")
    customer_id = parse_int(request.args.get("customer_id"), "customer_id", allow_none=True)
    kind = parse_enum(UnitKind, request.args.get("unit_kind") or UnitKind.PACK.value, "unit_kind")
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError("Product not found")
    base = customer_pricing_service.base_price_for(product, kind)
    allowed = customer_pricing_service.get_allowed_unit_price(customer_id, product.id, kind, base)
    return jsonify({
        "product_id": product.id,
        "customer_id": customer_id,
        "unit_kind": kind.value,
        "base_unit_price": str(base),
        "allowed_unit_price": str(allowed),
    })


@pricing_bp.route("/customer-prices", methods=["POST"])
@require_actor
@require_role(ROLE_MANAGER)
def set_customer_price():
    data = require_fields(request.get_json(silent=True), "customer_id", "product_id", "mode", "value")
    rule = customer_pricing_service.set_customer_price(
        parse_int(data.get("customer_id"), "customer_id"),
        parse_int(data.get("product_id"), "product_id"),
        parse_enum(UnitKind, data.get("unit_kind") or UnitKind.PACK.value, "unit_kind"),
        parse_enum(PriceMode, data.get("mode"), "mode"),
        data.get("value"),
        starts_at=parse_iso_datetime(data.get("starts_at")) if data.get("starts_at") else None,
        ends_at=parse_iso_datetime(data.get("ends_at")) if data.get("ends_at") else None,
    )
    return jsonify(rule.to_dict()), 201


@pricing_bp.route("/rules", methods=["GET"])
@require_actor
def list_rules():
    enabled_only = request.args.get("enabled_only", "false").lower() == "true"
    return jsonify(promotions_service.list_pricing_rules(enabled_only))


@pricing_bp.route("/rules", methods=["POST"])
@require_actor
@require_role(ROLE_MANAGER)
def create_rule():
    data = request.get_json(silent=True) or {}
    rule = promotions_service.create_pricing_rule(data)
    return jsonify(rule.to_dict()), 201


@pricing_bp.route("/rules/<int:rule_id>", methods=["PATCH"])
@require_actor
@require_role(ROLE_MANAGER)
def update_rule(rule_id: int):
    data = request.get_json(silent=True) or {}
    rule = promotions_service.update_pricing_rule(rule_id, data)
    return jsonify(rule.to_dict())
