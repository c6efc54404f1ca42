"""
Pricing Rule Evaluator

WHY: The cashier screen, the order freezer and the quote endpoint must all
agree on what a cart costs. Keeping the evaluator a pure function of
(cart, rules, customer, now) makes that agreement testable and lets the
same numbers be reproduced later from the frozen inputs.

DESIGN PRINCIPLES:
- No database access, no clock access unless `now` is omitted
- Rules run in ascending priority (unspecified priority runs last)
- Every intermediate money value is rounded to 2 decimals before it is
  accumulated so totals never drift
- Order-level discounts are spread over lines with the last line taking
  the rounding remainder, so per-line shares add up exactly
- The input cart is never mutated; "get" items for a different product are
  returned as synthesised free lines
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_FLOOR, Decimal
from typing import Iterable, Sequence

from ..time_utils import utcnow
from .money import CENT, ZERO, clamp, round2, to_decimal

DEFAULT_PRIORITY = 1000
HUNDRED = Decimal(100)


class RuleKind(str, enum.Enum):
    PERCENT_OFF = "PERCENT_OFF"
    AMOUNT_OFF = "AMOUNT_OFF"
    PRICE_OVERRIDE = "PRICE_OVERRIDE"
    BUY_X_GET_Y = "BUY_X_GET_Y"


class RuleScope(str, enum.Enum):
    ITEM = "ITEM"
    ORDER = "ORDER"


# =============================================================================
# INPUT TYPES
# =============================================================================

@dataclass(frozen=True)
class CartItem:
    id: object
    product_id: int
    qty: Decimal
    unit_price: Decimal
    name: str = ""
    category_id: int | None = None
    brand_id: int | None = None
    sku: str | None = None
    unit_kind: str | None = None
    tags: frozenset = frozenset()

    @property
    def line_amount(self) -> Decimal:
        return round2(to_decimal(self.qty) * to_decimal(self.unit_price))


@dataclass(frozen=True)
class Selector:
    """Which cart lines a rule touches. An empty selector matches every line."""
    product_ids: frozenset = frozenset()
    category_ids: frozenset = frozenset()
    brand_ids: frozenset = frozenset()
    sku_contains: str | None = None
    exclude_product_ids: frozenset = frozenset()
    unit_kind: str | None = None

    def matches(self, item: CartItem) -> bool:
        if item.product_id in self.exclude_product_ids:
            return False
        if self.unit_kind and item.unit_kind and item.unit_kind != self.unit_kind:
            return False

        has_criteria = bool(self.product_ids or self.category_ids or self.brand_ids or self.sku_contains)
        if not has_criteria:
            return True

        if item.product_id in self.product_ids:
            return True
        if item.category_id is not None and item.category_id in self.category_ids:
            return True
        if item.brand_id is not None and item.brand_id in self.brand_ids:
            return True
        if self.sku_contains and item.sku and self.sku_contains.lower() in item.sku.lower():
            return True
        return False


@dataclass(frozen=True)
class Rule:
    id: object
    name: str
    kind: RuleKind
    scope: RuleScope = RuleScope.ITEM
    selector: Selector = field(default_factory=Selector)

    # Value fields, interpreted per kind
    percent: Decimal | None = None          # PERCENT_OFF
    amount: Decimal | None = None           # AMOUNT_OFF
    override_price: Decimal | None = None   # PRICE_OVERRIDE

    # BUY_X_GET_Y
    buy_qty: int = 0
    get_qty: int = 0
    get_product_id: int | None = None
    get_product_name: str = ""
    get_unit_price: Decimal | None = None
    get_unit_kind: str | None = None
    get_percent: Decimal = HUNDRED
    max_applications: int | None = None
    once_per_order: bool = False

    priority: int | None = None
    enabled: bool = True
    stackable: bool = True

    # Eligibility gate
    valid_from: datetime | None = None
    valid_until: datetime | None = None
    days_of_week: frozenset | None = None   # Monday == 0
    min_subtotal: Decimal | None = None
    customer_ids: frozenset | None = None
    any_tags: frozenset | None = None

    @property
    def effective_priority(self) -> int:
        return DEFAULT_PRIORITY if self.priority is None else self.priority


@dataclass(frozen=True)
class CustomerContext:
    id: int | None = None
    tags: frozenset = frozenset()


# =============================================================================
# OUTPUT TYPES
# =============================================================================

@dataclass(frozen=True)
class ItemDiscount:
    item_id: object
    amount: Decimal


@dataclass(frozen=True)
class FreeItem:
    rule_id: object
    product_id: int
    name: str
    qty: Decimal
    unit_price: Decimal
    charged_unit_price: Decimal
    line_total: Decimal
    unit_kind: str | None = None

    @property
    def discount(self) -> Decimal:
        return round2(self.unit_price * self.qty - self.line_total)

    def to_dict(self) -> dict:
        return {
            "rule_id": self.rule_id,
            "product_id": self.product_id,
            "name": self.name,
            "qty": str(self.qty),
            "unit_price": str(self.unit_price),
            "charged_unit_price": str(self.charged_unit_price),
            "line_total": str(self.line_total),
            "unit_kind": self.unit_kind,
        }


@dataclass(frozen=True)
class AppliedDiscount:
    rule_id: object
    name: str
    amount: Decimal
    items: tuple = ()
    free_items: tuple = ()

    @property
    def free_value(self) -> Decimal:
        return round2(sum((f.discount for f in self.free_items), ZERO))

    @property
    def has_benefit(self) -> bool:
        return self.amount > 0 or bool(self.free_items)

    def to_dict(self) -> dict:
        return {
            "rule_id": self.rule_id,
            "name": self.name,
            "amount": str(self.amount),
            "items": [{"item_id": d.item_id, "amount": str(d.amount)} for d in self.items],
            "free_items": [f.to_dict() for f in self.free_items],
            "free_value": str(self.free_value),
        }


@dataclass(frozen=True)
class AdjustedItem:
    item_id: object
    product_id: int
    qty: Decimal
    unit_price: Decimal
    line_amount: Decimal
    discount: Decimal
    line_total: Decimal

    @property
    def effective_unit_price(self) -> Decimal:
        if self.qty <= 0:
            return ZERO
        return round2(self.line_total / self.qty)

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "product_id": self.product_id,
            "qty": str(self.qty),
            "unit_price": str(self.unit_price),
            "line_amount": str(self.line_amount),
            "discount": str(self.discount),
            "line_total": str(self.line_total),
            "effective_unit_price": str(self.effective_unit_price),
        }


@dataclass(frozen=True)
class PricingResult:
    subtotal: Decimal
    discounts: tuple
    discount_total: Decimal
    total: Decimal
    items: tuple
    free_items: tuple

    def item(self, item_id) -> AdjustedItem | None:
        for adjusted in self.items:
            if adjusted.item_id == item_id:
                return adjusted
        return None

    def to_dict(self) -> dict:
        return {
            "subtotal": str(self.subtotal),
            "discounts": [d.to_dict() for d in self.discounts],
            "discount_total": str(self.discount_total),
            "total": str(self.total),
            "items": [i.to_dict() for i in self.items],
            "free_items": [f.to_dict() for f in self.free_items],
        }


# =============================================================================
# ELIGIBILITY
# =============================================================================

def is_rule_eligible(
    rule: Rule,
    items: Sequence[CartItem],
    subtotal: Decimal,
    customer: CustomerContext | None,
    now: datetime,
) -> bool:
    if not rule.enabled:
        return False
    if rule.valid_from is not None and now < rule.valid_from:
        return False
    if rule.valid_until is not None and now >= rule.valid_until:
        return False
    if rule.days_of_week is not None and now.weekday() not in rule.days_of_week:
        return False
    if rule.min_subtotal is not None and subtotal < to_decimal(rule.min_subtotal):
        return False
    if rule.customer_ids is not None:
        if customer is None or customer.id not in rule.customer_ids:
            return False
    if rule.any_tags:
        tags = set(customer.tags) if customer else set()
        for item in items:
            tags.update(item.tags)
        if not tags.intersection(rule.any_tags):
            return False
    return True


# =============================================================================
# DISTRIBUTION
# =============================================================================

def distribute_amount(amount: Decimal, weights: Sequence[tuple[object, Decimal]]) -> list[ItemDiscount]:
    """
    Split `amount` over weighted lines proportionally.

    Largest remainder: every share is floored to the cent, then the cents
    left over go one at a time to the lines with the biggest fractional
    remainder (later lines win ties). Shares add up to `amount` exactly
    and each one stays within [0, weight].
    """
    amount = round2(amount)
    live = [(key, w) for key, w in weights if w > 0]
    if amount <= 0 or not live:
        return []

    total_weight = sum((w for _, w in live), ZERO)
    amount = min(amount, round2(total_weight))
    floors: list[Decimal] = []
    remainders: list[tuple[Decimal, int]] = []
    for index, (_, weight) in enumerate(live):
        exact = amount * weight / total_weight
        floored = exact.quantize(CENT, rounding=ROUND_FLOOR)
        floors.append(floored)
        remainders.append((exact - floored, index))

    leftover = int((amount - sum(floors, ZERO)) / CENT)
    for _, index in sorted(remainders, reverse=True)[:leftover]:
        floors[index] += CENT

    shares = [
        ItemDiscount(key, clamp(share, ZERO, weight))
        for (key, weight), share in zip(live, floors)
    ]
    return [s for s in shares if s.amount != 0]


# =============================================================================
# RULE APPLICATION
# =============================================================================

def _percent(rule_value) -> Decimal:
    return clamp(to_decimal(rule_value), 0, 100)


def _apply_item_percent(rule: Rule, matches, net) -> list[ItemDiscount]:
    pct = _percent(rule.percent)
    out = []
    for item in matches:
        d = min(round2(pct / HUNDRED * net[item.id]), net[item.id])
        if d > 0:
            out.append(ItemDiscount(item.id, d))
    return out


def _apply_item_amount(rule: Rule, matches, net) -> list[ItemDiscount]:
    weights = [(item.id, net[item.id]) for item in matches]
    matched_total = round2(sum((w for _, w in weights), ZERO))
    amount = min(round2(rule.amount), matched_total)
    return distribute_amount(amount, weights)


def _apply_price_override(rule: Rule, matches, net) -> list[ItemDiscount]:
    override = round2(rule.override_price)
    out = []
    for item in matches:
        qty = to_decimal(item.qty)
        if qty <= 0:
            continue
        current_unit = net[item.id] / qty
        gap = current_unit - override
        if gap <= 0:
            continue
        d = min(round2(gap * qty), net[item.id])
        if d > 0:
            out.append(ItemDiscount(item.id, d))
    return out


def _apply_buy_x_get_y(rule: Rule, matches, net) -> tuple[list[ItemDiscount], list[FreeItem]]:
    if rule.buy_qty <= 0 or rule.get_qty <= 0:
        return [], []

    if rule.once_per_order:
        budget = 1
    else:
        budget = rule.max_applications

    pct = _percent(rule.get_percent)
    discounts: list[ItemDiscount] = []
    free_qty = ZERO

    for item in matches:
        if budget is not None and budget <= 0:
            break
        sets = int(to_decimal(item.qty) // rule.buy_qty)
        if sets <= 0:
            continue
        applications = sets if budget is None else min(sets, budget)
        if budget is not None:
            budget -= applications

        same_product = rule.get_product_id is None or rule.get_product_id == item.product_id
        if same_product:
            raw = rule.get_qty * applications * to_decimal(item.unit_price) * pct / HUNDRED
            d = min(round2(raw), net[item.id])
            if d > 0:
                discounts.append(ItemDiscount(item.id, d))
        else:
            free_qty += rule.get_qty * applications

    free_items: list[FreeItem] = []
    if free_qty > 0:
        unit = round2(rule.get_unit_price)
        charged_unit = round2(unit * (HUNDRED - pct) / HUNDRED)
        free_items.append(FreeItem(
            rule_id=rule.id,
            product_id=rule.get_product_id,
            name=rule.get_product_name,
            qty=free_qty,
            unit_price=unit,
            charged_unit_price=charged_unit,
            line_total=round2(charged_unit * free_qty),
            unit_kind=rule.get_unit_kind,
        ))
    return discounts, free_items


def _apply_order_level(rule: Rule, items, net) -> list[ItemDiscount]:
    interim = round2(sum((net[i.id] for i in items), ZERO))
    if interim <= 0:
        return []
    if rule.kind == RuleKind.PERCENT_OFF:
        amount = round2(_percent(rule.percent) / HUNDRED * interim)
    else:
        amount = min(round2(rule.amount), interim)
    return distribute_amount(amount, [(i.id, net[i.id]) for i in items])


def _apply_rule(rule: Rule, items, net) -> AppliedDiscount | None:
    free_items: list[FreeItem] = []

    order_level = rule.scope == RuleScope.ORDER and rule.kind in (RuleKind.PERCENT_OFF, RuleKind.AMOUNT_OFF)
    if order_level:
        breakdown = _apply_order_level(rule, items, net)
    else:
        matches = [i for i in items if rule.selector.matches(i) and net[i.id] > 0]
        if not matches:
            return None
        if rule.kind == RuleKind.PERCENT_OFF:
            breakdown = _apply_item_percent(rule, matches, net)
        elif rule.kind == RuleKind.AMOUNT_OFF:
            breakdown = _apply_item_amount(rule, matches, net)
        elif rule.kind == RuleKind.PRICE_OVERRIDE:
            breakdown = _apply_price_override(rule, matches, net)
        else:
            breakdown, free_items = _apply_buy_x_get_y(rule, matches, net)

    amount = round2(sum((d.amount for d in breakdown), ZERO))
    if amount <= 0 and not free_items:
        return None
    return AppliedDiscount(
        rule_id=rule.id,
        name=rule.name,
        amount=amount,
        items=tuple(breakdown),
        free_items=tuple(free_items),
    )


# =============================================================================
# ENTRY POINT
# =============================================================================

def evaluate_pricing(
    items: Iterable[CartItem],
    rules: Iterable[Rule],
    customer: CustomerContext | None = None,
    now: datetime | None = None,
) -> PricingResult:
    """
    Evaluate a rule set against a cart.

    Rules run in ascending priority; ties keep their input order. A
    non-stackable rule that produced any benefit ends evaluation.
    """
    items = list(items)
    now = now or utcnow()

    subtotal = round2(sum((i.line_amount for i in items), ZERO))
    net = {i.id: i.line_amount for i in items}
    per_item = {i.id: ZERO for i in items}

    applied: list[AppliedDiscount] = []
    for rule in sorted(rules, key=lambda r: r.effective_priority):
        if not is_rule_eligible(rule, items, subtotal, customer, now):
            continue
        result = _apply_rule(rule, items, net)
        if result is None:
            continue

        for share in result.items:
            net[share.item_id] = round2(net[share.item_id] - share.amount)
            per_item[share.item_id] = round2(per_item[share.item_id] + share.amount)
        applied.append(result)

        if not rule.stackable and result.has_benefit:
            break

    discount_total = round2(sum((d.amount for d in applied), ZERO))
    free_items = tuple(f for d in applied for f in d.free_items)
    free_total = round2(sum((f.line_total for f in free_items), ZERO))

    adjusted = tuple(
        AdjustedItem(
            item_id=i.id,
            product_id=i.product_id,
            qty=to_decimal(i.qty),
            unit_price=round2(i.unit_price),
            line_amount=i.line_amount,
            discount=per_item[i.id],
            line_total=net[i.id],
        )
        for i in items
    )

    return PricingResult(
        subtotal=subtotal,
        discounts=tuple(applied),
        discount_total=discount_total,
        total=round2(subtotal - discount_total + free_total),
        items=adjusted,
        free_items=free_items,
    )
