"""
Time helpers for rotation windows and context expiry.

All timestamps are timezone-aware UTC. They are persisted as ISO-8601
strings with a fixed microsecond precision so that lexical ordering in SQL
matches chronological ordering.
"""

from __future__ import annotations

import calendar
import math
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Return the current UTC datetime with timezone info.

    Prefer this over ``datetime.utcnow()`` (which returns naive datetimes).
    """
    return datetime.now(tz=timezone.utc)


def to_iso(dt: Optional[datetime]) -> Optional[str]:
    """Serialize ``dt`` for storage; naive datetimes are assumed UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored timestamp back into an aware UTC datetime."""
    if value is None:
        return None
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def end_of_month(now: datetime) -> datetime:
    """Return 23:59:59 UTC on the last day of ``now``'s calendar month."""
    last_day = calendar.monthrange(now.year, now.month)[1]
    return now.astimezone(timezone.utc).replace(
        day=last_day, hour=23, minute=59, second=59, microsecond=0
    )


def add_days(dt: datetime, days: int) -> datetime:
    return dt + timedelta(days=days)


def days_until(target: datetime, now: datetime) -> int:
    """Whole days remaining until ``target``, rounded up, never negative."""
    seconds = (target - now).total_seconds()
    return max(0, math.ceil(seconds / 86400))
