from __future__ import annotations

from ..extensions import db
from settlepos.time_utils import to_utc_z
from ..services.money import money_str
from .states import PriceMode, UnitKind


class Product(db.Model):
    """
    Catalog product as seen by the settlement engine.

    WHY: Settlement needs the current retail and pack base prices to classify
    a frozen line and two stock pools to deduct from. Everything else about
    the catalog (option lists, photos, suppliers) lives elsewhere.

    STOCK POOLS:
    - stock: sealed packs (sacks, boxes)
    - retail_stock: loose retail units from opened packs
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
        db.CheckConstraint("retail_stock >= 0", name="ck_products_retail_stock_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=True, unique=True)
    name = db.Column(db.String(255), nullable=False)

    category_id = db.Column(db.Integer, nullable=True, index=True)
    brand_id = db.Column(db.Integer, nullable=True, index=True)
    tags = db.Column(db.JSON, nullable=True)

    retail_price = db.Column(db.Numeric(12, 2), nullable=True)  # per retail unit
    pack_price = db.Column(db.Numeric(12, 2), nullable=True)    # per sealed pack
    allow_pack_sale = db.Column(db.Boolean, nullable=False, default=False)  # can sell retail units out of a pack

    stock = db.Column(db.Numeric(12, 3), nullable=False, default=0)
    retail_stock = db.Column(db.Numeric(12, 3), nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "category_id": self.category_id,
            "brand_id": self.brand_id,
            "tags": self.tags or [],
            "retail_price": money_str(self.retail_price),
            "pack_price": money_str(self.pack_price),
            "allow_pack_sale": self.allow_pack_sale,
            "stock": str(self.stock),
            "retail_stock": str(self.retail_stock),
            "is_active": self.is_active,
        }


class StockMovement(db.Model):
    """
    Append-only record of every stock deduction made by a settlement.

    WHY: Stock counters on Product are mutable; this ledger explains every
    change. Corrections are new rows with the opposite sign.
    """
    __tablename__ = "stock_movements"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    pack_delta = db.Column(db.Numeric(12, 3), nullable=False, default=0)
    retail_delta = db.Column(db.Numeric(12, 3), nullable=False, default=0)
    reason = db.Column(db.String(32), nullable=False)  # SALE
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "order_id": self.order_id,
            "pack_delta": str(self.pack_delta),
            "retail_delta": str(self.retail_delta),
            "reason": self.reason,
            "created_at": to_utc_z(self.created_at),
        }


class Customer(db.Model):
    __tablename__ = "customers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    first_name = db.Column(db.String(128), nullable=False)
    last_name = db.Column(db.String(128), nullable=True)
    alias = db.Column(db.String(128), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    tags = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @property
    def display_name(self) -> str:
        full = " ".join(p for p in (self.first_name, self.last_name) if p)
        return f"{full} ({self.alias})" if self.alias else full

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "alias": self.alias,
            "phone": self.phone,
            "tags": self.tags or [],
            "display_name": self.display_name,
        }


class CustomerItemPrice(db.Model):
    """
    Customer-specific price rule for one (product, unit kind).

    Several rows may exist for the same key; the most recently created
    active one whose window contains "now" wins.
    """
    __tablename__ = "customer_item_prices"
    __table_args__ = (
        db.Index("ix_customer_item_prices_key", "customer_id", "product_id", "unit_kind"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    unit_kind = db.Column(db.Enum(UnitKind, native_enum=False, length=16), nullable=False)

    mode = db.Column(db.Enum(PriceMode, native_enum=False, length=32), nullable=False)
    value = db.Column(db.Numeric(12, 2), nullable=False)

    active = db.Column(db.Boolean, nullable=False, default=True)
    starts_at = db.Column(db.DateTime(timezone=True), nullable=True)
    ends_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "product_id": self.product_id,
            "unit_kind": self.unit_kind.value,
            "mode": self.mode.value,
            "value": money_str(self.value),
            "active": self.active,
            "starts_at": to_utc_z(self.starts_at),
            "ends_at": to_utc_z(self.ends_at),
            "created_at": to_utc_z(self.created_at),
        }


class PricingRule(db.Model):
    """
    Store-wide promotion fed to the pricing evaluator.

    Selector and eligibility lists are JSON arrays; null means "no
    restriction". Percentages are plain numbers in [0, 100].
    """
    __tablename__ = "pricing_rules"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    kind = db.Column(db.String(32), nullable=False)    # PERCENT_OFF, AMOUNT_OFF, PRICE_OVERRIDE, BUY_X_GET_Y
    scope = db.Column(db.String(16), nullable=False, default="ITEM")  # ITEM, ORDER

    priority = db.Column(db.Integer, nullable=True)
    enabled = db.Column(db.Boolean, nullable=False, default=True, index=True)
    stackable = db.Column(db.Boolean, nullable=False, default=True)

    percent = db.Column(db.Numeric(6, 2), nullable=True)
    amount = db.Column(db.Numeric(12, 2), nullable=True)
    override_price = db.Column(db.Numeric(12, 2), nullable=True)

    buy_qty = db.Column(db.Integer, nullable=True)
    get_qty = db.Column(db.Integer, nullable=True)
    get_product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)
    get_unit_kind = db.Column(db.String(16), nullable=True)
    get_percent = db.Column(db.Numeric(6, 2), nullable=True)
    max_applications = db.Column(db.Integer, nullable=True)
    once_per_order = db.Column(db.Boolean, nullable=False, default=False)

    # {"product_ids": [...], "category_ids": [...], "brand_ids": [...],
    #  "sku_contains": "...", "exclude_product_ids": [...], "unit_kind": "PACK"}
    selector = db.Column(db.JSON, nullable=True)

    valid_from = db.Column(db.DateTime(timezone=True), nullable=True)
    valid_until = db.Column(db.DateTime(timezone=True), nullable=True)
    days_of_week = db.Column(db.JSON, nullable=True)
    min_subtotal = db.Column(db.Numeric(12, 2), nullable=True)
    customer_ids = db.Column(db.JSON, nullable=True)
    any_tags = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    get_product = db.relationship("Product", foreign_keys=[get_product_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "kind": self.kind,
            "scope": self.scope,
            "priority": self.priority,
            "enabled": self.enabled,
            "stackable": self.stackable,
            "percent": str(self.percent) if self.percent is not None else None,
            "amount": money_str(self.amount),
            "override_price": money_str(self.override_price),
            "buy_qty": self.buy_qty,
            "get_qty": self.get_qty,
            "get_product_id": self.get_product_id,
            "get_unit_kind": self.get_unit_kind,
            "get_percent": str(self.get_percent) if self.get_percent is not None else None,
            "max_applications": self.max_applications,
            "once_per_order": self.once_per_order,
            "selector": self.selector,
            "valid_from": to_utc_z(self.valid_from),
            "valid_until": to_utc_z(self.valid_until),
            "days_of_week": self.days_of_week,
            "min_subtotal": money_str(self.min_subtotal),
            "customer_ids": self.customer_ids,
            "any_tags": self.any_tags,
        }
