"""Timestamp helpers.

Stored timestamps are UTC ISO-8601 strings with an explicit offset, so string
comparison in SQL matches chronological order.
"""

from datetime import UTC, datetime
from zoneinfo import ZoneInfo

from src.core.config import settings


def utc_now() -> datetime:
    return datetime.now(UTC)


def to_iso(value: datetime) -> str:
    """Normalize an aware (or naive, assumed UTC) datetime to the stored format."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="seconds")


def parse_iso(value: str) -> datetime:
    """Parse a stored timestamp; naive values (SQLite defaults) are treated as UTC."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def household_tz() -> ZoneInfo:
    return ZoneInfo(settings.household_timezone)
