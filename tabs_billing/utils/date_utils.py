"""Date manipulation utilities"""

from datetime import datetime, timezone


def utcnow() -> datetime:
    """Timezone-aware current UTC time"""
    return datetime.now(timezone.utc)


def isoformat_utc(value: datetime | None = None) -> str:
    """ISO-8601 timestamp for JSON metadata (naive datetimes are treated as UTC)"""
    value = value or utcnow()
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()
