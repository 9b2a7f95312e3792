"""
core/clock.py -- The time source for everything that compares against "now".

A clock is any zero-argument callable returning a timezone-aware UTC datetime.
Production code uses utc_now(); tests pass a controllable fake so expiry can be
exercised without sleeping.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    """Serialize an aware datetime for storage (ISO 8601, UTC)."""
    return value.astimezone(timezone.utc).isoformat()


def from_iso(value: str) -> datetime:
    """Parse a stored ISO 8601 timestamp back to an aware UTC datetime.

    Naive values are assumed to already be UTC.
    """
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)
