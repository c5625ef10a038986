"""
Timezone helpers for ledger timestamps.

All ledger times are stored as UTC. Some backends (sqlite) hand back naive
datetimes, so comparisons go through ``ensure_utc``.
"""

from datetime import datetime, timezone
from typing import Optional, overload


def utcnow() -> datetime:
    """Return the current timezone-aware UTC time."""
    return datetime.now(timezone.utc)


@overload
def ensure_utc(value: datetime) -> datetime:
    ...


@overload
def ensure_utc(value: None) -> None:
    ...


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes and normalize aware ones."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def hours_between(start: datetime, end: datetime) -> float:
    """Return ``end - start`` in hours, tolerating naive inputs."""
    return (ensure_utc(end) - ensure_utc(start)).total_seconds() / 3600
