"""Date manipulation utilities"""

import math
from datetime import datetime, timezone

SECONDS_PER_DAY = 86_400


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes (e.g. read back from SQLite) as UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def days_since(start: datetime, now: datetime) -> int:
    """
    Whole days elapsed from start to now, rounding any partial day up.

    A start date in the future yields 0 rather than a negative count.
    """
    elapsed = (as_utc(now) - as_utc(start)).total_seconds()
    if elapsed <= 0:
        return 0
    return math.ceil(elapsed / SECONDS_PER_DAY)
