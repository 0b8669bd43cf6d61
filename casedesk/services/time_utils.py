from __future__ import annotations

from datetime import date, datetime, timezone

import pytz

from casedesk.config import settings


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything is stored as UTC.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def local_day(value: datetime, timezone_name: str | None = None) -> date:
    """Calendar day of ``value`` on the attendance clock (``settings.attendance_timezone``)."""
    tz = pytz.timezone(timezone_name or settings.attendance_timezone)
    return as_utc(value).astimezone(tz).date()


def parse_remote_datetime(value) -> datetime | None:
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    text = str(value).strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    return as_utc(datetime.fromisoformat(text))
