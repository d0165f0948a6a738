# slotbook/utils/clock.py
"""
Timezone helpers.

All timestamps are stored as UTC. Some backends (SQLite) hand back naive
datetimes, so anything compared in Python goes through ``as_utc`` first.
"""
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes, convert aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
