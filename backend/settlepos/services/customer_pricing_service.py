"""
Customer Price Lookup

WHY: Regular customers (sari-sari store owners, resellers) get negotiated
prices per product and per unit kind. Order freezing and the settlement
price guard both need the same single "allowed unit price".

DESIGN PRINCIPLES:
- Walk-in (no customer) always pays base price
- Most recently created active rule wins; older rules are history
- Result is clamped at zero and rounded to 2 decimals
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import or_

from ..extensions import db
from ..models import CustomerItemPrice, Customer, Product
from ..models.states import PriceMode, UnitKind
from ..time_utils import utcnow
from ..validation import NotFoundError, ValidationError
from .money import non_negative, round2, to_decimal


def apply_price_mode(mode: PriceMode, value, base_unit_price) -> Decimal:
    base = to_decimal(base_unit_price)
    v = to_decimal(value)
    if mode == PriceMode.FIXED_PRICE:
        price = v
    elif mode == PriceMode.FIXED_DISCOUNT:
        price = base - v
    elif mode == PriceMode.PERCENT_DISCOUNT:
        price = base - base * v / Decimal(100)
    else:
        price = base
    return round2(non_negative(price))


def find_active_rule(
    customer_id: int,
    product_id: int,
    unit_kind: UnitKind,
    now: datetime | None = None,
) -> CustomerItemPrice | None:
    now = now or utcnow()
    return (
        db.session.query(CustomerItemPrice)
        .filter(
            CustomerItemPrice.customer_id == customer_id,
            CustomerItemPrice.product_id == product_id,
            CustomerItemPrice.unit_kind == unit_kind,
            CustomerItemPrice.active.is_(True),
            or_(CustomerItemPrice.starts_at.is_(None), CustomerItemPrice.starts_at <= now),
            or_(CustomerItemPrice.ends_at.is_(None), CustomerItemPrice.ends_at >= now),
        )
        .order_by(CustomerItemPrice.created_at.desc(), CustomerItemPrice.id.desc())
        .first()
    )


def get_allowed_unit_price(
    customer_id: int | None,
    product_id: int,
    unit_kind: UnitKind,
    base_unit_price,
    now: datetime | None = None,
) -> Decimal:
    """Allowed price for (customer, product, unit kind); base price if no rule."""
    base = round2(base_unit_price)
    if not customer_id:
        return base
    rule = find_active_rule(customer_id, product_id, unit_kind, now=now)
    if rule is None:
        return base
    return apply_price_mode(rule.mode, rule.value, base)


def base_price_for(product: Product, unit_kind: UnitKind) -> Decimal:
    if unit_kind == UnitKind.RETAIL:
        return round2(product.retail_price)
    return round2(product.pack_price)


def allowed_prices_for_product(customer_id: int | None, product: Product, now: datetime | None = None) -> dict:
    """{UnitKind: allowed price} for every unit kind the product is priced in."""
    out = {}
    if product.allow_pack_sale and to_decimal(product.retail_price) > 0:
        out[UnitKind.RETAIL] = get_allowed_unit_price(customer_id, product.id, UnitKind.RETAIL, product.retail_price, now)
    if to_decimal(product.pack_price) > 0:
        out[UnitKind.PACK] = get_allowed_unit_price(customer_id, product.id, UnitKind.PACK, product.pack_price, now)
    return out


def set_customer_price(
    customer_id: int,
    product_id: int,
    unit_kind: UnitKind,
    mode: PriceMode,
    value,
    *,
    starts_at: datetime | None = None,
    ends_at: datetime | None = None,
) -> CustomerItemPrice:
    """
    Record a new customer price rule.

    Older rules for the same key are left alone; the newest active one wins.
    """
    if db.session.get(Customer, customer_id) is None:
        raise NotFoundError("Customer not found")
    if db.session.get(Product, product_id) is None:
        raise NotFoundError("Product not found")

    v = round2(value)
    if v < 0:
        raise ValidationError("value must be >= 0")
    if mode == PriceMode.PERCENT_DISCOUNT and v > 100:
        raise ValidationError("percent discount must be between 0 and 100")
    if starts_at and ends_at and ends_at < starts_at:
        raise ValidationError("ends_at must be after starts_at")

    rule = CustomerItemPrice(
        customer_id=customer_id,
        product_id=product_id,
        unit_kind=unit_kind,
        mode=mode,
        value=v,
        active=True,
        starts_at=starts_at,
        ends_at=ends_at,
        created_at=utcnow(),
    )
    db.session.add(rule)
    db.session.commit()
    return rule
