"""
Promotion Rule Storage

WHY: The pricing evaluator is pure and knows nothing about the database.
Managers edit promotions as rows; order drafting and the quote screen need
them back as evaluator rules, priced on top of each customer's allowed
unit price.

DESIGN PRINCIPLES:
- Rows are validated on write so the evaluator never sees a broken rule
- Only enabled rules are loaded; schedule and customer gates stay in the
  evaluator
- Disable instead of delete so past orders keep an explanation
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from ..extensions import db
from ..models import Customer, PricingRule, Product
from ..models.states import UnitKind
from ..time_utils import parse_iso_datetime
from ..validation import NotFoundError, ValidationError, parse_enum
from . import customer_pricing_service
from .money import round2, to_decimal
from .pricing_service import (
    CartItem,
    CustomerContext,
    PricingResult,
    Rule,
    RuleKind,
    RuleScope,
    Selector,
    evaluate_pricing,
)

_EDITABLE = (
    'name', 'kind', 'scope', 'priority', 'enabled', 'stackable', 'percent', 'amount', 'override_price',
    'buy_qty', 'get_qty', 'get_product_id', 'get_unit_kind', 'get_percent', 'max_applications',
    'once_per_order', 'selector', 'valid_from', 'valid_until', 'days_of_week', 'min_subtotal',
    'customer_ids', 'any_tags',
)


def _ids(values) -> frozenset:
    return frozenset(int(v) for v in (values or []))


def _dec(value) -> Decimal | None:
    return None if value is None else to_decimal(value)


def rule_from_model(row: PricingRule) -> Rule:
    """Convert a stored promotion into the evaluator's immutable Rule."""
    sel = row.selector or {}
    get_unit_price = None
    get_name = ""
    if row.get_product is not None:
        get_name = row.get_product.name
        if row.get_unit_kind == UnitKind.RETAIL.value:
            get_unit_price = round2(row.get_product.retail_price)
        else:
            get_unit_price = round2(row.get_product.pack_price)

    return Rule(
        id=row.id,
        name=row.name,
        kind=RuleKind(row.kind),
        scope=RuleScope(row.scope or RuleScope.ITEM.value),
        selector=Selector(
            product_ids=_ids(sel.get("product_ids")),
            category_ids=_ids(sel.get("category_ids")),
            brand_ids=_ids(sel.get("brand_ids")),
            sku_contains=sel.get("sku_contains") or None,
            exclude_product_ids=_ids(sel.get("exclude_product_ids")),
            unit_kind=sel.get("unit_kind") or None,
        ),
        percent=_dec(row.percent),
        amount=_dec(row.amount),
        override_price=_dec(row.override_price),
        buy_qty=row.buy_qty or 0,
        get_qty=row.get_qty or 0,
        get_product_id=row.get_product_id,
        get_product_name=get_name,
        get_unit_price=get_unit_price,
        get_unit_kind=row.get_unit_kind or (UnitKind.PACK.value if row.get_product_id else None),
        get_percent=_dec(row.get_percent) if row.get_percent is not None else Decimal(100),
        max_applications=row.max_applications,
        once_per_order=bool(row.once_per_order),
        priority=row.priority,
        enabled=bool(row.enabled),
        stackable=bool(row.stackable),
        valid_from=row.valid_from,
        valid_until=row.valid_until,
        days_of_week=frozenset(row.days_of_week) if row.days_of_week is not None else None,
        min_subtotal=_dec(row.min_subtotal),
        customer_ids=_ids(row.customer_ids) if row.customer_ids is not None else None,
        any_tags=frozenset(row.any_tags) if row.any_tags else None,
    )


def list_pricing_rules(enabled_only: bool = False) -> list[dict]:
    q = db.session.query(PricingRule)
    if enabled_only:
        q = q.filter_by(enabled=True)
    return [r.to_dict() for r in q.order_by(PricingRule.priority.asc(), PricingRule.id.asc()).all()]


def load_active_rules() -> list[Rule]:
    """Enabled promotions; date/day/customer gates are left to the evaluator."""
    rows = db.session.query(PricingRule).filter_by(enabled=True).order_by(PricingRule.id.asc()).all()
    return [rule_from_model(r) for r in rows]


def _clean(data: dict) -> dict:
    patch = {}
    for key in _EDITABLE:
        if key not in data:
            continue
        value = data[key]
        if key == 'kind':
            value = parse_enum(RuleKind, value, 'kind').value
        elif key == 'scope':
            value = parse_enum(RuleScope, value, 'scope').value
        elif key in ('valid_from', 'valid_until') and isinstance(value, str):
            value = parse_iso_datetime(value)
        elif key in ('percent', 'get_percent') and value is not None:
            value = to_decimal(value)
            if value < 0 or value > 100:
                raise ValidationError(f"{key} must be between 0 and 100")
        elif key in ('amount', 'override_price', 'min_subtotal') and value is not None:
            value = round2(value)
            if value < 0:
                raise ValidationError(f"{key} must be >= 0")
        patch[key] = value
    return patch


def _check_rule(rule: PricingRule) -> None:
    kind = RuleKind(rule.kind)
    if kind == RuleKind.PERCENT_OFF and rule.percent is None:
        raise ValidationError("percent is required for PERCENT_OFF")
    if kind == RuleKind.AMOUNT_OFF and rule.amount is None:
        raise ValidationError("amount is required for AMOUNT_OFF")
    if kind == RuleKind.PRICE_OVERRIDE and rule.override_price is None:
        raise ValidationError("override_price is required for PRICE_OVERRIDE")
    if kind == RuleKind.BUY_X_GET_Y and (not rule.buy_qty or not rule.get_qty):
        raise ValidationError("buy_qty and get_qty are required for BUY_X_GET_Y")
    if rule.get_product_id and db.session.get(Product, rule.get_product_id) is None:
        raise NotFoundError("get_product_id not found")


def create_pricing_rule(data: dict) -> PricingRule:
    if not data.get('name') or not data.get('kind'):
        raise ValidationError("name and kind are required")
    rule = PricingRule(**_clean(data))
    _check_rule(rule)
    db.session.add(rule)
    db.session.commit()
    return rule


def update_pricing_rule(rule_id: int, data: dict) -> PricingRule:
    rule = db.session.get(PricingRule, rule_id)
    if not rule:
        raise NotFoundError("Pricing rule not found")
    for key, value in _clean(data).items():
        setattr(rule, key, value)
    _check_rule(rule)
    db.session.commit()
    return rule


# =============================================================================
# CART QUOTES
# =============================================================================

def customer_context(customer_id: int | None) -> CustomerContext | None:
    if not customer_id:
        return None
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise NotFoundError("Customer not found")
    return CustomerContext(id=customer.id, tags=frozenset(customer.tags or []))


def build_cart_item(key, product: Product, qty, unit_kind: UnitKind, unit_price) -> CartItem:
    return CartItem(
        id=key,
        product_id=product.id,
        qty=to_decimal(qty),
        unit_price=round2(unit_price),
        name=product.name,
        category_id=product.category_id,
        brand_id=product.brand_id,
        sku=product.sku,
        unit_kind=unit_kind.value,
        tags=frozenset(product.tags or []),
    )


def quote_cart(customer_id: int | None, lines: list[dict], now: datetime | None = None) -> PricingResult:
    """
    Price a prospective cart: customer allowed price per line, then the
    enabled promotions on top.

    lines: [{"product_id": 1, "qty": 2, "unit_kind": "PACK"}, ...]
    """
    ctx = customer_context(customer_id)
    items = []
    for idx, line in enumerate(lines):
        product = db.session.get(Product, line.get("product_id"))
        if product is None:
            raise NotFoundError(f"Product {line.get('product_id')} not found")
        kind = parse_enum(UnitKind, line.get("unit_kind") or UnitKind.PACK.value, "unit_kind")
        base = customer_pricing_service.base_price_for(product, kind)
        if base <= 0:
            raise ValidationError(f"{product.name} has no {kind.value.lower()} price")
        allowed = customer_pricing_service.get_allowed_unit_price(customer_id, product.id, kind, base, now)
        items.append(build_cart_item(idx, product, line.get("qty"), kind, allowed))
    return evaluate_pricing(items, load_active_rules(), ctx, now)
