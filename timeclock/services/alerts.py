from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.orm import Session

from timeclock.models import TimeclockEntry
from timeclock.services.clock_sessions import get_active_entry
from timeclock.services.overtime import UTC, EntryLike, calculate_daily_minutes, calculate_weekly_minutes
from timeclock.services.rules_config import OvertimeSnapshot, get_overtime_config
from timeclock.services.time_windows import local_week_bounds_utc, normalize_ts


@dataclass(frozen=True, slots=True)
class ThresholdStatus:
    current_minutes: int
    threshold_minutes: int | None
    approaching: bool
    exceeded: bool


@dataclass(frozen=True, slots=True)
class AlertStatus:
    daily: ThresholdStatus
    weekly: ThresholdStatus

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def threshold_status(current_minutes: int, threshold: int | None, alert_before: int | None) -> ThresholdStatus:
    if threshold is None:
        return ThresholdStatus(current_minutes, None, approaching=False, exceeded=False)

    exceeded = current_minutes >= threshold
    approaching = False
    if not exceeded and alert_before is not None:
        approaching = current_minutes >= threshold - alert_before
    return ThresholdStatus(current_minutes, threshold, approaching=approaching, exceeded=exceeded)


def compute_alert_status(
    entries: Iterable[EntryLike],
    config: OvertimeSnapshot | None,
    *,
    reference: datetime,
    active_minutes: int = 0,
    tz: ZoneInfo = UTC,
) -> AlertStatus | None:
    if config is None or not config.notify_employee:
        return None

    completed = list(entries)
    daily_total = calculate_daily_minutes(completed, reference, tz=tz) + active_minutes
    weekly_total = calculate_weekly_minutes(completed, reference, tz=tz) + active_minutes
    return AlertStatus(
        daily=threshold_status(daily_total, config.daily_threshold_minutes, config.alert_before_daily_minutes),
        weekly=threshold_status(weekly_total, config.weekly_threshold_minutes, config.alert_before_weekly_minutes),
    )


def get_alert_status(
    db: Session,
    *,
    user_id: int,
    now: datetime | None = None,
    tz: ZoneInfo = UTC,
) -> AlertStatus | None:
    config = get_overtime_config(db)
    if config is None or not config.notify_employee:
        return None

    reference = normalize_ts(now)
    week_start_utc, week_end_utc = local_week_bounds_utc(reference, tz)
    entries = list(
        db.scalars(
            select(TimeclockEntry).where(
                TimeclockEntry.user_id == user_id,
                TimeclockEntry.clock_in >= week_start_utc,
                TimeclockEntry.clock_in < week_end_utc,
                TimeclockEntry.clock_out.is_not(None),
            )
        ).all()
    )

    active_minutes = 0
    active_entry = get_active_entry(db, user_id=user_id)
    if active_entry is not None:
        elapsed = (reference - normalize_ts(active_entry.clock_in)).total_seconds()
        active_minutes = max(0, math.floor(elapsed / 60))

    return compute_alert_status(entries, config, reference=reference, active_minutes=active_minutes, tz=tz)
