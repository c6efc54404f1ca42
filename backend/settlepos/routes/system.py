# backend/settlepos/routes/system.py
"""
System health endpoint.

Reports database reachability plus two settlement-specific signals:
orders holding a lock past its TTL, and shifts waiting for a manager.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Order, CashierShift
from ..models.states import ShiftStatus
from ..services import lock_service
from ..time_utils import lock_cutoff, to_utc_z, utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def _timed_check(name: str, probe) -> dict:
    """
    Run one probe and wrap its (status, details) in a timed result.

    A probe that raises is reported as unhealthy; the traceback goes to the
    log, never to the caller.
    """
    started = time.perf_counter()
    try:
        status, details = probe()
        result = {"status": status, "details": details}
    except Exception:
        current_app.logger.exception("%s health check failed", name)
        result = {"status": "unhealthy", "error": f"{name} check error"}
    result["latency_ms"] = round((time.perf_counter() - started) * 1000, 2)
    return result


def _probe_database():
    return "healthy", {
        "orders": db.session.query(Order).count(),
        "shifts": db.session.query(CashierShift).count(),
    }


def _probe_settlement():
    # Expired locks are harmless (the next claim wins) but many of them
    # mean cashiers are abandoning checkouts: degraded, not down.
    cutoff = lock_cutoff(utcnow(), lock_service.order_lock_ttl())
    stale_locks = db.session.query(Order).filter(
        Order.locked_at.isnot(None),
        Order.locked_at < cutoff,
    ).count()
    awaiting_close = db.session.query(CashierShift).filter_by(status=ShiftStatus.SUBMITTED).count()
    return ("degraded" if stale_locks else "healthy"), {
        "stale_order_locks": stale_locks,
        "shifts_awaiting_final_close": awaiting_close,
    }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: any check unhealthy
    """
    started = time.perf_counter()
    checks = {
        "database": _timed_check("Database", _probe_database),
        "settlement": _timed_check("Settlement", _probe_settlement),
    }
    statuses = {c["status"] for c in checks.values()}

    if "unhealthy" in statuses:
        overall, http_status = "unhealthy", 503
    elif "degraded" in statuses:
        overall, http_status = "degraded", 200
    else:
        overall, http_status = "healthy", 200

    return {
        "status": overall,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round((time.perf_counter() - started) * 1000, 2),
        "checks": checks,
    }, http_status
