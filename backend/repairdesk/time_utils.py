from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Optional
from zoneinfo import ZoneInfo


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_date(value) -> date:
    """Accept a date, a datetime or a 'YYYY-MM-DD' string."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        return date.fromisoformat(value.strip()[:10])
    raise ValueError("invalid date")


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")


def folio_period(at: Optional[datetime] = None) -> str:
    """Calendar period key (YYYYMM) of a UTC instant."""
    return (at or utcnow()).strftime("%Y%m")


def local_day_bounds(day: date, tz_name: str = "UTC") -> tuple[datetime, datetime]:
    """
    Return [00:00:00.000, 23:59:59.999] of `day` in `tz_name`, as UTC-naive datetimes.

    Both bounds are inclusive.
    """
    tz = timezone.utc if tz_name in (None, "", "UTC") else ZoneInfo(tz_name)
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day, time(23, 59, 59, 999000), tzinfo=tz)
    return (
        start.astimezone(timezone.utc).replace(tzinfo=None),
        end.astimezone(timezone.utc).replace(tzinfo=None),
    )


def end_of_day(dt: datetime) -> datetime:
    """Push a datetime to 23:59:59.999 of the same day."""
    return dt.replace(hour=23, minute=59, second=59, microsecond=999000)
