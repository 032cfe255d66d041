from __future__ import annotations

from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """
    Some drivers (SQLite) hand back naive datetimes for timezone-aware columns.
    Everything is stored in UTC, so a naive value is UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_valid_timezone(name: str | None) -> bool:
    if not name or not isinstance(name, str):
        return False
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, OSError):
        # zone directories such as "America" surface as IsADirectoryError
        return False
    return True


def js_weekday(value: datetime) -> int:
    """Weekday with 0=Sunday .. 6=Saturday (Python's weekday() is 0=Monday)."""
    return (value.weekday() + 1) % 7
