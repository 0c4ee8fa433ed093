"""
Time helpers shared by the calculators.

Timestamps are handled as timezone-aware UTC values.  Some drivers (SQLite
in particular) hand ``DateTime(timezone=True)`` columns back as naive
values, so anything read from the database goes through ``as_utc`` before
arithmetic against ``utcnow()``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

SECONDS_PER_DAY = 24 * 60 * 60


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to a naive datetime, convert an aware one to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def resolve_now(now: Optional[datetime]) -> datetime:
    """Return ``now`` normalised to UTC, or the current time if omitted."""
    return as_utc(now) if now is not None else utcnow()
