"""UTC helpers shared by models and services."""
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on the way back)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def from_timestamp(value) -> Optional[datetime]:
    """Convert a Stripe unix timestamp (seconds) to an aware datetime."""
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)
