"""Calendar-day helpers for streak bookkeeping."""

from __future__ import annotations

from datetime import date, datetime, timezone, tzinfo
from zoneinfo import ZoneInfo

from classquest.config import get_settings


def _zone(tz_name: str | None) -> tzinfo:
    name = tz_name or get_settings().calendar_timezone
    if name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


def calendar_day(dt: datetime, tz_name: str | None = None) -> date:
    """Calendar date of ``dt`` in the configured timezone.

    Naive datetimes (SQLite drops tzinfo) are taken as UTC.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(_zone(tz_name)).date()


def days_between(earlier: datetime, later: datetime, tz_name: str | None = None) -> int:
    """Whole calendar days from ``earlier`` to ``later`` (0 = same day)."""
    return (calendar_day(later, tz_name) - calendar_day(earlier, tz_name)).days


def is_same_day(a: datetime, b: datetime, tz_name: str | None = None) -> bool:
    return days_between(a, b, tz_name) == 0


def is_previous_day(earlier: datetime, later: datetime, tz_name: str | None = None) -> bool:
    return days_between(earlier, later, tz_name) == 1
