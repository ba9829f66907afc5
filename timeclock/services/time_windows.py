from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

# Python weekday(): Monday=0 ... Sunday=6. Weeks start on Sunday.
WEEK_START_WEEKDAY = 6


def normalize_ts(ts_utc: datetime | None) -> datetime:
    if ts_utc is None:
        return datetime.now(timezone.utc)

    if ts_utc.tzinfo is None:
        return ts_utc.replace(tzinfo=timezone.utc)

    return ts_utc.astimezone(timezone.utc)


def local_date(ts_utc: datetime, tz: ZoneInfo) -> date:
    return normalize_ts(ts_utc).astimezone(tz).date()


def week_start_date(day: date) -> date:
    offset = (day.weekday() - WEEK_START_WEEKDAY) % 7
    return day - timedelta(days=offset)


def local_week_bounds_utc(reference_ts_utc: datetime, tz: ZoneInfo) -> tuple[datetime, datetime]:
    start_day = week_start_date(local_date(reference_ts_utc, tz))
    local_start = datetime.combine(start_day, time.min, tzinfo=tz)
    local_end = datetime.combine(start_day + timedelta(days=7), time.min, tzinfo=tz)
    return local_start.astimezone(timezone.utc), local_end.astimezone(timezone.utc)
