from __future__ import annotations

import unittest
from unittest.mock import patch

from sqlite_support import SqliteTestCase

from timeclock.errors import ValidationFailedError
from timeclock.models import RoundingDirection, RoundingUnit, TimeclockRulesConfig
from timeclock.services import rules_config
from timeclock.services.rules_config import (
    BreakRule,
    RulesConfigStore,
    get_overtime_config,
    update_overtime_config,
    update_rules_config,
)


class _FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class RulesConfigStoreTests(SqliteTestCase):
    def test_first_read_creates_default_singleton(self) -> None:
        store = RulesConfigStore(ttl_seconds=30)

        snapshot = store.get_snapshot(self.db)

        self.assertFalse(snapshot.auto_approve_enabled)
        self.assertEqual(snapshot.rounding_unit, RoundingUnit.NONE)
        self.assertEqual(snapshot.break_rules, ())
        self.assertEqual(self.db.query(TimeclockRulesConfig).count(), 1)

    def test_snapshot_is_cached_until_ttl_expires(self) -> None:
        clock = _FakeClock()
        store = RulesConfigStore(ttl_seconds=30, clock=clock)
        first = store.get_snapshot(self.db)

        row = self.db.query(TimeclockRulesConfig).one()
        row.auto_approve_enabled = True
        self.db.commit()

        clock.now += 10
        self.assertIs(store.get_snapshot(self.db), first)

        clock.now += 25
        refreshed = store.get_snapshot(self.db)
        self.assertTrue(refreshed.auto_approve_enabled)

    def test_update_invalidates_cache_and_returns_before_after(self) -> None:
        store = RulesConfigStore(ttl_seconds=3600)
        store.get_snapshot(self.db)

        before, after = update_rules_config(
            self.db,
            store,
            changes={
                "break_deduction_enabled": True,
                "break_rules": [{"after_minutes": 360, "deduct_minutes": 30}],
                "rounding_unit": "15min",
                "rounding_direction": "up",
            },
        )

        self.assertFalse(before.break_deduction_enabled)
        self.assertTrue(after.break_deduction_enabled)
        self.assertEqual(after.break_rules, (BreakRule(after_minutes=360, deduct_minutes=30),))
        self.assertEqual(after.rounding_direction, RoundingDirection.UP)
        self.assertEqual(store.get_snapshot(self.db), after)

    def test_read_overlapping_invalidate_is_not_cached(self) -> None:
        store = RulesConfigStore(ttl_seconds=3600)
        real_read = rules_config._get_or_create_rules_row

        def read_then_invalidate(db):  # type: ignore[no-untyped-def]
            row = real_read(db)
            store.invalidate()
            return row

        with patch.object(rules_config, "_get_or_create_rules_row", side_effect=read_then_invalidate):
            stale = store.get_snapshot(self.db)
        self.assertFalse(stale.auto_approve_enabled)

        row = self.db.query(TimeclockRulesConfig).one()
        row.auto_approve_enabled = True
        self.db.commit()

        self.assertTrue(store.get_snapshot(self.db).auto_approve_enabled)

    def test_update_rejects_inverted_auto_approve_window(self) -> None:
        store = RulesConfigStore()
        with self.assertRaises(ValidationFailedError) as ctx:
            update_rules_config(
                self.db,
                store,
                changes={"auto_approve_min_hours": 10, "auto_approve_max_hours": 2},
            )
        self.assertEqual(ctx.exception.code, "INVALID_CONFIG")
        self.assertEqual(store.get_snapshot(self.db).auto_approve_max_hours, 12.0)

    def test_snapshot_dict_is_json_friendly(self) -> None:
        payload = RulesConfigStore().get_snapshot(self.db).to_dict()
        self.assertEqual(payload["rounding_unit"], "none")
        self.assertEqual(payload["min_duration_action"], "reject")
        self.assertEqual(payload["break_rules"], [])


class OvertimeConfigTests(SqliteTestCase):
    def test_missing_config_reads_as_none(self) -> None:
        self.assertIsNone(get_overtime_config(self.db))

    def test_update_creates_and_then_patches_config(self) -> None:
        before, after = update_overtime_config(
            self.db,
            changes={"daily_threshold_minutes": 480, "alert_before_daily_minutes": 30},
        )
        self.assertIsNone(before)
        self.assertEqual(after.daily_threshold_minutes, 480)
        self.assertIsNone(after.weekly_threshold_minutes)

        before, after = update_overtime_config(self.db, changes={"daily_threshold_minutes": None})
        self.assertEqual(before.daily_threshold_minutes, 480)
        self.assertIsNone(after.daily_threshold_minutes)
        self.assertEqual(get_overtime_config(self.db), after)

    def test_margin_larger_than_threshold_is_rejected(self) -> None:
        with self.assertRaises(ValidationFailedError) as ctx:
            update_overtime_config(
                self.db,
                changes={"weekly_threshold_minutes": 600, "alert_before_weekly_minutes": 900},
            )
        self.assertEqual(ctx.exception.code, "INVALID_CONFIG")
        self.assertIsNone(get_overtime_config(self.db))


    def test_notification_flags_cannot_be_nulled(self) -> None:
        update_overtime_config(self.db, changes={"daily_threshold_minutes": 480})

        for field_name in ("notify_employee", "notify_manager"):
            with self.assertRaises(ValidationFailedError) as ctx:
                update_overtime_config(self.db, changes={field_name: None})
            self.assertEqual(ctx.exception.code, "INVALID_CONFIG")

        config = get_overtime_config(self.db)
        self.assertTrue(config.notify_employee)
        self.assertTrue(config.notify_manager)

if __name__ == "__main__":
    unittest.main()
