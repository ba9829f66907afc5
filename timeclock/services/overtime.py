"""Regular / daily-overtime / weekly-overtime split for completed entries.

Daily overtime is carved out first; only the remaining regular minutes count
toward the weekly threshold, so no minute is ever counted twice.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Protocol
from zoneinfo import ZoneInfo

from timeclock.services.rules_config import OvertimeSnapshot
from timeclock.services.time_windows import local_date, week_start_date

UTC = ZoneInfo("UTC")


class EntryLike(Protocol):
    user_id: int
    clock_in: datetime
    clock_out: datetime | None
    duration: int | None


@dataclass(frozen=True, slots=True)
class EmployeeOvertime:
    user_id: int
    regular_minutes: int
    daily_overtime_minutes: int
    weekly_overtime_minutes: int
    total_minutes: int
    entries_processed: int

    @property
    def overtime_minutes(self) -> int:
        return self.daily_overtime_minutes + self.weekly_overtime_minutes


@dataclass(slots=True)
class OvertimeCalculation:
    employees: dict[int, EmployeeOvertime] = field(default_factory=dict)
    total_regular_minutes: int = 0
    total_daily_overtime_minutes: int = 0
    total_weekly_overtime_minutes: int = 0


def is_completed(entry: EntryLike) -> bool:
    return entry.clock_out is not None and entry.duration is not None


def entry_minutes(entry: EntryLike) -> int:
    return max(0, int(entry.duration or 0)) // 60


def calculate_overtime(
    entries: Iterable[EntryLike],
    config: OvertimeSnapshot | None,
    *,
    tz: ZoneInfo = UTC,
) -> OvertimeCalculation:
    by_user: dict[int, list[EntryLike]] = defaultdict(list)
    for entry in entries:
        if not is_completed(entry):
            continue
        by_user[entry.user_id].append(entry)

    result = OvertimeCalculation()
    for user_id in sorted(by_user):
        employee = calculate_employee_overtime(user_id, by_user[user_id], config, tz=tz)
        result.employees[user_id] = employee
        result.total_regular_minutes += employee.regular_minutes
        result.total_daily_overtime_minutes += employee.daily_overtime_minutes
        result.total_weekly_overtime_minutes += employee.weekly_overtime_minutes
    return result


def calculate_employee_overtime(
    user_id: int,
    entries: list[EntryLike],
    config: OvertimeSnapshot | None,
    *,
    tz: ZoneInfo = UTC,
) -> EmployeeOvertime:
    daily_threshold = config.daily_threshold_minutes if config is not None else None
    weekly_threshold = config.weekly_threshold_minutes if config is not None else None

    minutes_by_day: dict[date, int] = defaultdict(int)
    for entry in entries:
        minutes_by_day[local_date(entry.clock_in, tz)] += entry_minutes(entry)

    daily_overtime = 0
    regular_by_week: dict[date, int] = defaultdict(int)
    for day, day_total in minutes_by_day.items():
        if daily_threshold is not None and day_total > daily_threshold:
            daily_overtime += day_total - daily_threshold
            day_regular = daily_threshold
        else:
            day_regular = day_total
        regular_by_week[week_start_date(day)] += day_regular

    weekly_overtime = 0
    if weekly_threshold is not None:
        for week_regular in regular_by_week.values():
            if week_regular > weekly_threshold:
                weekly_overtime += week_regular - weekly_threshold

    regular = sum(regular_by_week.values()) - weekly_overtime
    return EmployeeOvertime(
        user_id=user_id,
        regular_minutes=regular,
        daily_overtime_minutes=daily_overtime,
        weekly_overtime_minutes=weekly_overtime,
        total_minutes=regular + daily_overtime + weekly_overtime,
        entries_processed=len(entries),
    )


def calculate_daily_minutes(entries: Iterable[EntryLike], reference: datetime, *, tz: ZoneInfo = UTC) -> int:
    target_day = local_date(reference, tz)
    return sum(
        entry_minutes(entry)
        for entry in entries
        if is_completed(entry) and local_date(entry.clock_in, tz) == target_day
    )


def calculate_weekly_minutes(entries: Iterable[EntryLike], reference: datetime, *, tz: ZoneInfo = UTC) -> int:
    target_week = week_start_date(local_date(reference, tz))
    return sum(
        entry_minutes(entry)
        for entry in entries
        if is_completed(entry) and week_start_date(local_date(entry.clock_in, tz)) == target_week
    )
