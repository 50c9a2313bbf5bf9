"""Clock helpers.

Timestamps are stored in UTC.  SQLite drops tzinfo on the way back out, so
every value read from the store goes through :func:`as_utc` before it is
compared with an aware ``now``.
"""
from __future__ import annotations

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def local_date(value: datetime, tz_name: str) -> date:
    """Calendar date of *value* in the community time zone."""
    return as_utc(value).astimezone(ZoneInfo(tz_name)).date()


def same_calendar_day(a: datetime | None, b: datetime, tz_name: str) -> bool:
    if a is None:
        return False
    return local_date(a, tz_name) == local_date(b, tz_name)
