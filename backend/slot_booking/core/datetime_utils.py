from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from slot_booking.core.config import settings


def booking_zone() -> ZoneInfo:
    return ZoneInfo(settings.booking_timezone or "UTC")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utcnow_naive() -> datetime:
    """Current UTC time as a naive datetime for DATETIME columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_naive(value: datetime, tz: ZoneInfo) -> datetime:
    """Normalize a datetime to UTC and strip tzinfo; naive input is read as local time in ``tz``."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=tz)
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def from_utc_naive(value: datetime, tz: ZoneInfo) -> datetime:
    return value.replace(tzinfo=timezone.utc).astimezone(tz)


def day_bounds_utc(day: date, tz: ZoneInfo) -> tuple[datetime, datetime]:
    """[start, end) of ``day`` in ``tz``, expressed as naive UTC."""
    start_local = datetime.combine(day, time(0, 0), tzinfo=tz)
    end_local = datetime.combine(day + timedelta(days=1), time(0, 0), tzinfo=tz)
    return to_utc_naive(start_local, tz), to_utc_naive(end_local, tz)


def local_day_of(value_utc_naive: datetime, tz: ZoneInfo) -> date:
    return from_utc_naive(value_utc_naive, tz).date()
