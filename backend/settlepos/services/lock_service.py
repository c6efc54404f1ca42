"""
Order TTL Locks

WHY: Two cashiers must never settle the same order at once. Instead of a
mutex, an order carries (locked_at, locked_by); a claim is one conditional
UPDATE that only matches when the order is unlocked, the lock is older than
the TTL, or the caller already holds it. Zero rows affected means the race
was lost.

DESIGN PRINCIPLES:
- Compare-and-set in a single statement, never read-then-write
- A lost claim surfaces as a 423, callers do not retry blindly
- Locks self-expire; settle and cancel clear them as their last step
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import and_, or_, update

from ..extensions import db
from ..models import Order
from ..models.states import SETTLEABLE_ORDER_STATUSES
from ..time_utils import lock_cutoff, utcnow
from ..validation import ConflictError, LockConflictError, NotFoundError


def order_lock_ttl() -> int:
    return int(current_app.config.get("ORDER_LOCK_TTL_SECONDS", 300))


def remit_lock_ttl() -> int:
    return int(current_app.config.get("REMIT_LOCK_TTL_SECONDS", 600))


def _claimable(actor: str, now: datetime, ttl_seconds: int):
    return or_(
        Order.locked_at.is_(None),
        Order.locked_at < lock_cutoff(now, ttl_seconds),
        Order.locked_by == actor,
    )


def try_claim_order_lock(
    order_id: int,
    actor: str,
    *,
    ttl_seconds: int | None = None,
    statuses=SETTLEABLE_ORDER_STATUSES,
    note: str | None = None,
    now: datetime | None = None,
) -> bool:
    """
    Atomically claim the order for `actor`. Returns True if this call won.

    Does not commit; the claim becomes visible with the caller's transaction.
    """
    now = now or utcnow()
    ttl = order_lock_ttl() if ttl_seconds is None else ttl_seconds
    stmt = (
        update(Order)
        .where(
            and_(
                Order.id == order_id,
                Order.status.in_(statuses),
                _claimable(actor, now, ttl),
            )
        )
        .values(
            locked_at=now,
            locked_by=actor,
            lock_note=note,
            version_id=Order.version_id + 1,
        )
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    return result.rowcount == 1


def claim_order_lock(
    order_id: int,
    actor: str,
    *,
    ttl_seconds: int | None = None,
    statuses=SETTLEABLE_ORDER_STATUSES,
    note: str | None = None,
    now: datetime | None = None,
    conflict_cls=LockConflictError,
) -> Order:
    """
    Claim or explain why not.

    Raises NotFoundError for a missing order, ConflictError when the order
    is no longer in a claimable status, and `conflict_cls` (423 by default)
    when another actor holds a live lock. Returns the freshly loaded order.
    """
    if not try_claim_order_lock(order_id, actor, ttl_seconds=ttl_seconds, statuses=statuses, note=note, now=now):
        order = db.session.get(Order, order_id, populate_existing=True)
        if order is None:
            raise NotFoundError("Order not found")
        if order.status not in statuses:
            raise ConflictError(
                "Order is already settled/voided",
                details={"order_id": order_id, "status": order.status.value},
            )
        raise conflict_cls(
            "Order is locked by another cashier",
            details={"order_id": order_id, "locked_by": order.locked_by},
        )

    return db.session.get(Order, order_id, populate_existing=True)


def release_order_lock(order_id: int, actor: str) -> bool:
    """Drop the caller's own lock. Returns False if someone else holds it."""
    stmt = (
        update(Order)
        .where(and_(Order.id == order_id, Order.locked_by == actor))
        .values(locked_at=None, locked_by=None, lock_note=None, version_id=Order.version_id + 1)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    db.session.commit()
    return result.rowcount == 1


def clear_lock(order: Order) -> None:
    """Final step of a settle/cancel on an already-claimed order."""
    order.locked_at = None
    order.locked_by = None
    order.lock_note = None


def release_expired_locks(ttl_seconds: int | None = None, now: datetime | None = None) -> int:
    """Maintenance: clear every lock older than the TTL."""
    now = now or utcnow()
    ttl = order_lock_ttl() if ttl_seconds is None else ttl_seconds
    stmt = (
        update(Order)
        .where(and_(Order.locked_at.is_not(None), Order.locked_at < lock_cutoff(now, ttl)))
        .values(locked_at=None, locked_by=None, lock_note=None, version_id=Order.version_id + 1)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    db.session.commit()
    return result.rowcount
