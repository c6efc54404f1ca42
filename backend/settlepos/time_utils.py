from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Canonical server clock: UTC, stored naive."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _as_naive_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse a client timestamp for promotion windows and price rules.

    Blank input is None. Offsets (including a trailing Z) are converted to
    UTC; a timestamp without an offset is taken as UTC already.
    """
    text = (value or "").strip()
    if not text:
        return None
    if text[-1] in ("Z", "z"):
        text = text[:-1] + "+00:00"
    return _as_naive_utc(datetime.fromisoformat(text))


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Second-precision ISO-8601 with a Z suffix; naive values are UTC."""
    if dt is None:
        return None
    stamp = _as_naive_utc(dt).replace(microsecond=0)
    return stamp.isoformat() + "Z"


def lock_cutoff(now: datetime, ttl_seconds: int) -> datetime:
    """Locks taken before this instant are stale and may be reclaimed."""
    return now - timedelta(seconds=ttl_seconds)


def business_date_key(dt: datetime) -> str:
    """YYYYMMDD prefix used by receipt numbers."""
    return dt.strftime("%Y%m%d")
