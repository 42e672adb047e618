"""
Helper Functions
================

Common utility functions used across the application.

Every instant that crosses the persistence or wire boundary goes through
``format_datetime`` / ``parse_datetime`` so that a value written today is
read back as the very same UTC instant.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Annotated, Any

from pydantic import BeforeValidator, PlainSerializer


def utc_now() -> datetime:
    """Get current UTC datetime with timezone info."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_datetime(dt: datetime) -> str:
    """Format datetime to ISO 8601 string with an explicit UTC offset."""
    return ensure_utc(dt).isoformat()


def parse_datetime(value: Any) -> Any:
    """
    Parse an ISO 8601 string (or date/datetime) into an aware UTC datetime.

    Date-only values become midnight UTC.  Anything else is returned
    untouched so pydantic can report a proper validation error.
    """
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, str):
        return ensure_utc(datetime.fromisoformat(value.strip().replace("Z", "+00:00")))
    return value


def add_days(dt: datetime, days: int) -> datetime:
    """Shift *dt* by a whole number of days."""
    return dt + timedelta(days=days)


# Aware UTC datetime that serializes to ISO 8601 in JSON mode.
Instant = Annotated[
    datetime,
    BeforeValidator(parse_datetime),
    PlainSerializer(format_datetime, return_type=str, when_used="json"),
]
