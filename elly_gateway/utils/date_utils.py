"""Date manipulation utilities"""

import calendar
from datetime import date, datetime, timedelta, timezone
from typing import Tuple

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def add_months(from_date: date, months: int) -> date:
    """Shift a date by whole months, clamping the day to the target month's length"""
    month_index = from_date.month - 1 + months
    year = from_date.year + month_index // 12
    month = month_index % 12 + 1
    day = min(from_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def first_of_next_month(from_date: date) -> date:
    return add_months(from_date.replace(day=1), 1)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so mixed inputs stay comparable"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_iso_datetime(raw: str) -> datetime:
    """Parse ISO-8601 date or date-time (``Z`` suffix allowed) into an aware UTC datetime"""
    text = raw.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    return as_utc(datetime.fromisoformat(text))


def to_iso_seconds(value: datetime) -> str:
    """Format as ``2025-11-08T23:41:13Z`` (second precision, UTC)"""
    return as_utc(value).replace(microsecond=0).strftime("%Y-%m-%dT%H:%M:%SZ")


def lookback_window(days: int, now: datetime | None = None) -> Tuple[str, str]:
    """Return ``(from_iso, to_iso)`` covering the last ``days`` days up to ``now``"""
    end = as_utc(now) if now is not None else datetime.now(timezone.utc)
    return to_iso_seconds(end - timedelta(days=days)), to_iso_seconds(end)
