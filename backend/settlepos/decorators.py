# Overview: Request decorators that establish the acting user, role and drawer shift for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services import shift_service
from .validation import EngineError

ROLE_CASHIER = "CASHIER"
ROLE_MANAGER = "STORE_MANAGER"
ROLE_ADMIN = "ADMIN"
ROLE_RIDER = "RIDER"
KNOWN_ROLES = {ROLE_CASHIER, ROLE_MANAGER, ROLE_ADMIN, ROLE_RIDER}


def _header_int(name: str):
    raw = (request.headers.get(name) or "").strip()
    if not raw.isdigit():
        return None
    return int(raw)


def require_actor(f):
    """
    Require an authenticated actor.

    Authentication happens in front of this service; the gateway forwards
    the verified identity as headers:
    - X-Actor-Id: numeric user id
    - X-Actor-Role: CASHIER, STORE_MANAGER, ADMIN or RIDER
    - X-Shift-Id: cashier's current drawer shift (optional)

    Sets g.actor_id, g.actor_role and g.shift_id.
    Returns 401 if the id or role is missing or unknown.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        actor_id = _header_int("X-Actor-Id")
        role = (request.headers.get("X-Actor-Role") or "").strip().upper()

        if actor_id is None or role not in KNOWN_ROLES:
            return jsonify({"error": "Authentication required"}), 401

        g.actor_id = actor_id
        g.actor_role = role
        g.shift_id = _header_int("X-Shift-Id")

        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: str):
    """
    Require one of the given roles. Must be applied after @require_actor.

    ADMIN passes every role check.

    Usage:
        @require_actor
        @require_role("STORE_MANAGER")
        def my_route():
            ...
    """
    allowed = set(roles)

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not hasattr(g, "actor_role"):
                return jsonify({"error": "Authentication required"}), 401
            if g.actor_role != ROLE_ADMIN and g.actor_role not in allowed:
                return jsonify({
                    "error": "Permission denied",
                    "required_roles": sorted(allowed),
                }), 403
            return f(*args, **kwargs)

        return decorated_function

    return decorator


def require_writable_shift(f):
    """
    Require the cashier's X-Shift-Id to point at their own OPEN shift.

    Must be applied after @require_actor. Returns 409 when the drawer is
    locked (no shift, pending acceptance, submitted or closed).
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            g.shift = shift_service.require_writable_shift(g.shift_id, g.actor_id)
        except EngineError as e:
            return jsonify(e.to_dict()), e.status_code
        return f(*args, **kwargs)

    return decorated_function


def is_manager() -> bool:
    return getattr(g, "actor_role", None) in (ROLE_MANAGER, ROLE_ADMIN)
