"""Timezone helpers shared by models and workflow services."""
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Attach UTC to naive datetimes.

    Some backends (SQLite) hand back naive values for timezone-aware columns;
    all stored timestamps are UTC, so comparing them against `utcnow()` needs
    the tzinfo restored.
    """
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)
