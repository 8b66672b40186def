"""
Date/time helpers — framework-agnostic.

MongoDB returns naive datetimes unless the client is created with
``tz_aware=True``; these helpers keep comparisons in aware UTC either way.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current instant as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Return *value* as an aware UTC datetime.

    Naive datetimes (no ``tzinfo``) are assumed to be UTC. ``None`` passes
    through unchanged.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def expires_in(seconds: int, now: Optional[datetime] = None) -> datetime:
    """Absolute expiry *seconds* after *now* (default: the current instant)."""
    return (now or utcnow()) + timedelta(seconds=seconds)


def is_expired(expires_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
    """True when *expires_at* is missing or not strictly in the future."""
    if expires_at is None:
        return True
    return ensure_utc(expires_at) <= (now or utcnow())
