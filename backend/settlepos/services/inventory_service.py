"""
Settlement Inventory

WHY: A frozen line does not always say whether it was sold as a loose
retail unit or as a sealed pack. The store sells both from two stock pools,
so the settlement must decide which pool to deduct from.

DESIGN PRINCIPLES:
- One pure classifier decides RETAIL vs PACK; an explicit stored unit kind
  always wins over the price heuristic
- Deltas are aggregated per product before checking availability
- Deduction is one conditional UPDATE per product; stock never goes
  negative and a shortfall aborts the whole settlement
- Every deduction appends a StockMovement row
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import and_, update

from ..extensions import db
from ..models import Product, StockMovement
from ..models.states import UnitKind
from ..validation import IntegrityViolation
from .money import MONEY_EPS, ZERO, to_decimal


def _candidate_bases(retail_price, pack_price, allow_retail: bool) -> dict:
    bases = {}
    if allow_retail and to_decimal(retail_price) > 0:
        bases[UnitKind.RETAIL] = to_decimal(retail_price)
    if to_decimal(pack_price) > 0:
        bases[UnitKind.PACK] = to_decimal(pack_price)
    return bases


def classify_unit_kind(
    unit_price,
    *,
    retail_price,
    pack_price,
    allow_retail: bool,
    retail_allowed=None,
    pack_allowed=None,
    eps: Decimal = MONEY_EPS,
) -> UnitKind | None:
    """
    Infer RETAIL or PACK from the charged unit price.

    A kind matches when the price is within `eps` of its base price or of the
    customer's allowed price for it. When both kinds match, the closer one
    wins (RETAIL on a tie). No match returns None.
    """
    u = to_decimal(unit_price)
    bases = _candidate_bases(retail_price, pack_price, allow_retail)
    allowed = {UnitKind.RETAIL: retail_allowed, UnitKind.PACK: pack_allowed}

    best_kind = None
    best_dist = None
    for kind in (UnitKind.RETAIL, UnitKind.PACK):
        if kind not in bases:
            continue
        refs = [bases[kind]]
        if allowed[kind] is not None:
            refs.append(to_decimal(allowed[kind]))
        dist = min(abs(u - r) for r in refs)
        if dist <= eps and (best_dist is None or dist < best_dist):
            best_kind, best_dist = kind, dist
    return best_kind


def nearest_unit_kind(unit_price, *, retail_price, pack_price, allow_retail: bool) -> UnitKind | None:
    """Closest base price, used only to pick a reference for the price guard."""
    u = to_decimal(unit_price)
    bases = _candidate_bases(retail_price, pack_price, allow_retail)
    if not bases:
        return None
    return min(bases, key=lambda k: (abs(u - bases[k]), k != UnitKind.RETAIL))


@dataclass
class StockDelta:
    product_id: int
    name: str
    pack: Decimal = ZERO
    retail: Decimal = ZERO


def plan_stock_deductions(lines) -> tuple[dict, list]:
    """
    Aggregate per-product deductions from (product, qty, unit_kind, name)
    tuples and check them against current stock.

    Returns (deltas by product id, errors). Errors are per product.
    """
    deltas: dict[int, StockDelta] = {}
    products: dict[int, Product] = {}
    errors: list[dict] = []

    for product, qty, kind, name in lines:
        if kind is None:
            errors.append({"product_id": product.id, "name": name, "reason": "Cannot infer retail/pack from price"})
            continue
        products[product.id] = product
        delta = deltas.setdefault(product.id, StockDelta(product_id=product.id, name=product.name))
        if kind == UnitKind.RETAIL:
            delta.retail += to_decimal(qty)
        else:
            delta.pack += to_decimal(qty)

    for pid, delta in deltas.items():
        product = products[pid]
        retail_available = to_decimal(product.retail_stock)
        pack_available = to_decimal(product.stock)
        if delta.retail > retail_available:
            errors.append({
                "product_id": pid,
                "name": delta.name,
                "reason": f"Not enough retail stock ({retail_available.normalize()} available)",
            })
        if delta.pack > pack_available:
            errors.append({
                "product_id": pid,
                "name": delta.name,
                "reason": f"Not enough stock ({pack_available.normalize()} available)",
            })

    return deltas, errors


def apply_stock_deltas(order_id: int, deltas: dict) -> list[StockMovement]:
    """
    Deduct planned stock inside the caller's transaction.

    Each UPDATE only matches while enough stock remains, so a concurrent
    sale that got there first turns into an IntegrityViolation instead of a
    negative count.
    """
    movements = []
    for pid in sorted(deltas):
        delta = deltas[pid]
        if delta.pack <= 0 and delta.retail <= 0:
            continue
        stmt = (
            update(Product)
            .where(and_(
                Product.id == pid,
                Product.stock >= delta.pack,
                Product.retail_stock >= delta.retail,
            ))
            .values(
                stock=Product.stock - delta.pack,
                retail_stock=Product.retail_stock - delta.retail,
            )
            .execution_options(synchronize_session=False)
        )
        if db.session.execute(stmt).rowcount != 1:
            raise IntegrityViolation(
                "Insufficient stock",
                details={"errors": [{"product_id": pid, "name": delta.name, "reason": "Stock changed during settlement"}]},
            )
        movement = StockMovement(
            product_id=pid,
            order_id=order_id,
            pack_delta=-delta.pack,
            retail_delta=-delta.retail,
            reason="SALE",
        )
        db.session.add(movement)
        movements.append(movement)
    return movements
