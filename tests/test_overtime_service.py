from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from zoneinfo import ZoneInfo

from timeclock.services.alerts import compute_alert_status, threshold_status
from timeclock.services.overtime import (
    calculate_daily_minutes,
    calculate_overtime,
    calculate_weekly_minutes,
)
from timeclock.services.rules_config import OvertimeSnapshot

# Sunday 2026-03-01 starts the week; Monday is 2026-03-02.
SUNDAY = datetime(2026, 3, 1, tzinfo=timezone.utc)


def _entry(day_offset: int, hours: float, *, user_id: int = 1, start_hour: int = 8, extra_seconds: int = 0):
    clock_in = SUNDAY + timedelta(days=day_offset, hours=start_hour)
    duration = int(hours * 3600) + extra_seconds
    return SimpleNamespace(
        user_id=user_id,
        clock_in=clock_in,
        clock_out=clock_in + timedelta(seconds=duration),
        duration=duration,
    )


class OvertimeCalculationTests(unittest.TestCase):
    def test_daily_carve_out_keeps_week_under_weekly_threshold(self) -> None:
        entries = [
            _entry(1, 9),
            _entry(2, 8),
            _entry(3, 7),
            _entry(4, 7),
            _entry(5, 7),
        ]
        config = OvertimeSnapshot(daily_threshold_minutes=8 * 60, weekly_threshold_minutes=40 * 60)

        result = calculate_overtime(entries, config).employees[1]

        self.assertEqual(result.daily_overtime_minutes, 60)
        self.assertEqual(result.weekly_overtime_minutes, 0)
        self.assertEqual(result.regular_minutes, 37 * 60)
        self.assertEqual(result.total_minutes, 38 * 60)

    def test_weekly_threshold_uses_regular_minutes_after_daily_carve_out(self) -> None:
        # 5 x 9h + 4h Saturday = 49h. Daily carve-out takes 5h, so only 44h
        # regular reach the weekly comparison: 4h weekly overtime, not 9h.
        entries = [_entry(day, 9) for day in range(1, 6)] + [_entry(6, 4)]
        config = OvertimeSnapshot(daily_threshold_minutes=8 * 60, weekly_threshold_minutes=40 * 60)

        result = calculate_overtime(entries, config).employees[1]

        self.assertEqual(result.daily_overtime_minutes, 5 * 60)
        self.assertEqual(result.weekly_overtime_minutes, 4 * 60)
        self.assertEqual(result.regular_minutes, 40 * 60)

    def test_weekly_only_threshold(self) -> None:
        entries = [_entry(day, 8) for day in range(1, 7)]
        config = OvertimeSnapshot(weekly_threshold_minutes=40 * 60)

        result = calculate_overtime(entries, config).employees[1]

        self.assertEqual(result.daily_overtime_minutes, 0)
        self.assertEqual(result.weekly_overtime_minutes, 8 * 60)
        self.assertEqual(result.regular_minutes, 40 * 60)

    def test_null_thresholds_make_everything_regular(self) -> None:
        entries = [_entry(day, 12) for day in range(0, 7)]
        for config in (None, OvertimeSnapshot()):
            result = calculate_overtime(entries, config).employees[1]
            self.assertEqual(result.regular_minutes, 84 * 60)
            self.assertEqual(result.overtime_minutes, 0)

    def test_weeks_are_evaluated_separately(self) -> None:
        entries = [_entry(day, 8) for day in range(1, 6)] + [_entry(day, 8) for day in range(8, 13)]
        config = OvertimeSnapshot(weekly_threshold_minutes=40 * 60)

        result = calculate_overtime(entries, config).employees[1]

        self.assertEqual(result.weekly_overtime_minutes, 0)
        self.assertEqual(result.regular_minutes, 80 * 60)

    def test_open_entries_are_ignored_and_seconds_are_floored(self) -> None:
        open_entry = SimpleNamespace(user_id=1, clock_in=SUNDAY, clock_out=None, duration=None)
        entries = [open_entry, _entry(1, 1, extra_seconds=59)]

        result = calculate_overtime(entries, OvertimeSnapshot()).employees[1]

        self.assertEqual(result.total_minutes, 60)
        self.assertEqual(result.entries_processed, 1)

    def test_days_follow_tenant_timezone(self) -> None:
        new_york = ZoneInfo("America/New_York")
        monday_morning = SimpleNamespace(
            user_id=1,
            clock_in=datetime(2026, 3, 2, 13, 0, tzinfo=timezone.utc),
            clock_out=datetime(2026, 3, 2, 18, 0, tzinfo=timezone.utc),
            duration=5 * 3600,
        )
        monday_evening_local = SimpleNamespace(
            user_id=1,
            clock_in=datetime(2026, 3, 3, 1, 0, tzinfo=timezone.utc),
            clock_out=datetime(2026, 3, 3, 5, 0, tzinfo=timezone.utc),
            duration=4 * 3600,
        )
        config = OvertimeSnapshot(daily_threshold_minutes=8 * 60)
        entries = [monday_morning, monday_evening_local]

        self.assertEqual(calculate_overtime(entries, config).employees[1].daily_overtime_minutes, 0)
        self.assertEqual(calculate_overtime(entries, config, tz=new_york).employees[1].daily_overtime_minutes, 60)

    def test_minutes_are_never_lost_or_double_counted(self) -> None:
        configs = [
            OvertimeSnapshot(daily_threshold_minutes=480, weekly_threshold_minutes=2400),
            OvertimeSnapshot(daily_threshold_minutes=360, weekly_threshold_minutes=1200),
            OvertimeSnapshot(daily_threshold_minutes=480),
            OvertimeSnapshot(weekly_threshold_minutes=600),
        ]
        entries = []
        for index in range(30):
            entries.append(
                _entry(
                    index % 17,
                    (index * 7 % 13) + 0.25,
                    user_id=1 + index % 3,
                    start_hour=index % 10,
                    extra_seconds=index * 11 % 60,
                )
            )
        for config in configs:
            calculation = calculate_overtime(entries, config)
            for user_id, employee in calculation.employees.items():
                expected = sum(item.duration // 60 for item in entries if item.user_id == user_id)
                self.assertEqual(
                    employee.regular_minutes + employee.daily_overtime_minutes + employee.weekly_overtime_minutes,
                    expected,
                )
            self.assertEqual(
                calculation.total_regular_minutes
                + calculation.total_daily_overtime_minutes
                + calculation.total_weekly_overtime_minutes,
                sum(item.duration // 60 for item in entries),
            )

    def test_daily_and_weekly_minute_windows(self) -> None:
        entries = [_entry(0, 2), _entry(1, 8), _entry(3, 6), _entry(7, 5)]
        reference = SUNDAY + timedelta(days=3, hours=20)
        self.assertEqual(calculate_daily_minutes(entries, reference), 6 * 60)
        self.assertEqual(calculate_weekly_minutes(entries, reference), 16 * 60)


class AlertStatusTests(unittest.TestCase):
    def test_threshold_status_flags(self) -> None:
        approaching = threshold_status(420, 480, 60)
        self.assertTrue(approaching.approaching)
        self.assertFalse(approaching.exceeded)

        exceeded = threshold_status(480, 480, 60)
        self.assertTrue(exceeded.exceeded)
        self.assertFalse(exceeded.approaching)

        quiet = threshold_status(100, 480, 60)
        self.assertFalse(quiet.approaching or quiet.exceeded)

        no_margin = threshold_status(479, 480, None)
        self.assertFalse(no_margin.approaching)

        disabled = threshold_status(10_000, None, 60)
        self.assertFalse(disabled.approaching or disabled.exceeded)
        self.assertIsNone(disabled.threshold_minutes)

    def test_no_alerts_when_employee_notification_disabled(self) -> None:
        config = OvertimeSnapshot(daily_threshold_minutes=480, notify_employee=False)
        self.assertIsNone(compute_alert_status([_entry(3, 9)], config, reference=SUNDAY + timedelta(days=3)))
        self.assertIsNone(compute_alert_status([], None, reference=SUNDAY))

    def test_open_session_minutes_count_toward_both_windows(self) -> None:
        config = OvertimeSnapshot(
            daily_threshold_minutes=480,
            weekly_threshold_minutes=40 * 60,
            alert_before_daily_minutes=30,
            alert_before_weekly_minutes=120,
        )
        entries = [_entry(1, 9), _entry(2, 9), _entry(3, 9), _entry(4, 4)]
        reference = SUNDAY + timedelta(days=4, hours=20)

        status = compute_alert_status(entries, config, reference=reference, active_minutes=220)

        self.assertIsNotNone(status)
        self.assertEqual(status.daily.current_minutes, 4 * 60 + 220)
        self.assertTrue(status.daily.approaching)
        self.assertFalse(status.daily.exceeded)
        self.assertEqual(status.weekly.current_minutes, 31 * 60 + 220)
        self.assertFalse(status.weekly.approaching)

    def test_null_thresholds_return_status_without_flags(self) -> None:
        status = compute_alert_status([_entry(1, 9)], OvertimeSnapshot(), reference=SUNDAY + timedelta(days=1))
        self.assertIsNotNone(status)
        self.assertEqual(status.to_dict()["daily"]["current_minutes"], 9 * 60)
        self.assertFalse(status.daily.exceeded)
        self.assertFalse(status.weekly.approaching)


if __name__ == "__main__":
    unittest.main()
