from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any


# Largest amount accepted from a client for a single money field.
MAX_MONEY = Decimal("9999999.99")


class EngineError(ValueError):
    """
    Base for every settlement-engine rejection.

    Carries an HTTP-ish status and a structured `details` payload so callers
    can show per-item or per-product reasons instead of a bare string.
    """
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {"error": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(EngineError):
    """400-level input problem."""
    status_code = 400


class PriceViolationError(ValidationError):
    """Charged price is below the allowed price and no manager approved it."""


class ConflictError(EngineError):
    """409-level business rule conflict (already settled, shift locked, ...)."""
    status_code = 409


class LockConflictError(ConflictError):
    """423: another cashier holds a live lock on the order."""
    status_code = 423


class IntegrityViolation(EngineError):
    """422: stock, classification or receipt binding problems."""
    status_code = 422


class NotFoundError(EngineError):
    status_code = 404


def require_fields(data: dict | None, *names: str) -> dict:
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    missing = [n for n in names if data.get(n) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    return data


def parse_money(value: Any, field: str, *, allow_zero: bool = True, allow_none: bool = False) -> Decimal | None:
    """
    Strict money parsing for request payloads.

    Accepts numbers or numeric strings, rejects booleans, NaN/Infinity and
    negative values. Result is rounded to 2 decimals.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        if allow_none:
            return None
        raise ValidationError(f"{field} is required")
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    try:
        amount = Decimal(str(value).strip().replace(",", ""))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number")
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a number")
    amount = amount.quantize(Decimal("0.01"))
    if amount < 0:
        raise ValidationError(f"{field} must be >= 0")
    if not allow_zero and amount == 0:
        raise ValidationError(f"{field} must be > 0")
    if amount > MAX_MONEY:
        raise ValidationError(f"{field} cannot exceed {MAX_MONEY}")
    return amount


def parse_int(value: Any, field: str, *, allow_none: bool = False) -> int | None:
    if value is None or value == "":
        if allow_none:
            return None
        raise ValidationError(f"{field} is required")
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    raise ValidationError(f"{field} must be an integer")


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def parse_enum(enum_cls, value: Any, field: str):
    try:
        return enum_cls(str(value).strip().upper())
    except (ValueError, AttributeError):
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(f"{field} must be one of: {allowed}")
