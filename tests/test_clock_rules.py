from __future__ import annotations

import unittest
from dataclasses import replace

from timeclock.models import DurationAction, EntryStatus, RoundingDirection, RoundingUnit
from timeclock.services.clock_rules import (
    FLAG_ABOVE_MAXIMUM,
    FLAG_BELOW_MINIMUM,
    FLAG_NON_POSITIVE_DURATION,
    apply_break_deduction,
    apply_rounding,
    check_auto_approve,
    check_duration_bounds,
    process_clock_out,
)
from timeclock.services.rules_config import BreakRule, OvertimeSnapshot, RulesSnapshot

HOUR = 3600
MINUTE = 60


def _rules(**overrides) -> RulesSnapshot:  # type: ignore[no-untyped-def]
    return replace(RulesSnapshot(), **overrides)


class BreakDeductionTests(unittest.TestCase):
    def test_disabled_break_deduction_keeps_duration(self) -> None:
        rules = _rules(break_rules=(BreakRule(360, 30),))
        self.assertEqual(apply_break_deduction(8 * HOUR, rules), (0, 8 * HOUR))

    def test_largest_bracket_strictly_below_duration_applies(self) -> None:
        rules = _rules(
            break_deduction_enabled=True,
            break_rules=(BreakRule(240, 15), BreakRule(360, 30), BreakRule(600, 45)),
        )
        self.assertEqual(apply_break_deduction(8 * HOUR, rules), (30 * MINUTE, 7 * HOUR + 30 * MINUTE))
        self.assertEqual(apply_break_deduction(11 * HOUR, rules), (45 * MINUTE, 10 * HOUR + 15 * MINUTE))

    def test_duration_equal_to_threshold_does_not_match_bracket(self) -> None:
        rules = _rules(break_deduction_enabled=True, break_rules=(BreakRule(360, 30),))
        self.assertEqual(apply_break_deduction(6 * HOUR, rules), (0, 6 * HOUR))

    def test_deduction_never_goes_below_zero(self) -> None:
        rules = _rules(break_deduction_enabled=True, break_rules=(BreakRule(0, 30),))
        self.assertEqual(apply_break_deduction(10 * MINUTE, rules), (10 * MINUTE, 0))


class RoundingTests(unittest.TestCase):
    def test_none_unit_is_identity(self) -> None:
        self.assertEqual(apply_rounding(1234, RoundingUnit.NONE, RoundingDirection.NEAREST), 1234)

    def test_directions(self) -> None:
        value = 8 * HOUR + 7 * MINUTE
        self.assertEqual(
            apply_rounding(value, RoundingUnit.FIFTEEN_MINUTES, RoundingDirection.DOWN),
            8 * HOUR,
        )
        self.assertEqual(
            apply_rounding(value, RoundingUnit.FIFTEEN_MINUTES, RoundingDirection.UP),
            8 * HOUR + 15 * MINUTE,
        )
        self.assertEqual(
            apply_rounding(value, RoundingUnit.FIFTEEN_MINUTES, RoundingDirection.NEAREST),
            8 * HOUR,
        )

    def test_nearest_resolves_exact_half_upward(self) -> None:
        half = 7 * MINUTE + 30
        self.assertEqual(
            apply_rounding(half, RoundingUnit.FIFTEEN_MINUTES, RoundingDirection.NEAREST),
            15 * MINUTE,
        )
        self.assertEqual(apply_rounding(30, RoundingUnit.ONE_MINUTE, RoundingDirection.NEAREST), MINUTE)

    def test_rounding_is_idempotent(self) -> None:
        for unit in RoundingUnit:
            for direction in RoundingDirection:
                for value in (0, 59, 61, 299, 301, 421, 3599, 8 * HOUR + 449, 8 * HOUR + 451):
                    once = apply_rounding(value, unit, direction)
                    self.assertEqual(apply_rounding(once, unit, direction), once, (unit, direction, value))

    def test_seven_minute_unit(self) -> None:
        self.assertEqual(apply_rounding(10 * MINUTE, RoundingUnit.SEVEN_MINUTES, RoundingDirection.DOWN), 7 * MINUTE)
        self.assertEqual(apply_rounding(10 * MINUTE, RoundingUnit.SEVEN_MINUTES, RoundingDirection.UP), 14 * MINUTE)


class BoundsAndAutoApproveTests(unittest.TestCase):
    def test_bounds_pass_when_checks_disabled(self) -> None:
        self.assertTrue(check_duration_bounds(1, _rules()).passed)

    def test_below_minimum_and_above_maximum(self) -> None:
        rules = _rules(
            min_duration_enabled=True,
            min_duration_seconds=5 * MINUTE,
            max_duration_enabled=True,
            max_duration_hours=16,
            max_duration_action=DurationAction.FLAG,
        )
        below = check_duration_bounds(3 * MINUTE, rules)
        self.assertFalse(below.passed)
        self.assertEqual(below.flag_reason, FLAG_BELOW_MINIMUM)
        self.assertEqual(below.action, DurationAction.REJECT)

        above = check_duration_bounds(17 * HOUR, rules)
        self.assertEqual(above.flag_reason, FLAG_ABOVE_MAXIMUM)
        self.assertEqual(above.action, DurationAction.FLAG)

    def test_auto_approve_reasons(self) -> None:
        rules = _rules(auto_approve_enabled=True, auto_approve_min_hours=1, auto_approve_max_hours=10)
        self.assertEqual(check_auto_approve(8 * HOUR, _rules()).reason, "auto-approve disabled")
        self.assertEqual(check_auto_approve(0, rules).reason, "zero duration")
        self.assertEqual(check_auto_approve(30 * MINUTE, rules).reason, "below minimum hours")
        self.assertEqual(check_auto_approve(11 * HOUR, rules).reason, "exceeds maximum hours")
        self.assertTrue(check_auto_approve(8 * HOUR, rules).should_auto_approve)

    def test_auto_approve_blocked_by_daily_overtime(self) -> None:
        rules = _rules(auto_approve_enabled=True, auto_approve_max_hours=12)
        overtime = OvertimeSnapshot(daily_threshold_minutes=8 * 60)
        decision = check_auto_approve(9 * HOUR, rules, overtime)
        self.assertFalse(decision.should_auto_approve)
        self.assertEqual(decision.reason, "triggers daily overtime")

        unblocked = replace(rules, auto_approve_block_on_overtime=False)
        self.assertTrue(check_auto_approve(9 * HOUR, unblocked, overtime).should_auto_approve)


class ProcessClockOutTests(unittest.TestCase):
    def test_break_then_rounding_then_auto_approve(self) -> None:
        rules = _rules(
            break_deduction_enabled=True,
            break_rules=(BreakRule(360, 30),),
            rounding_unit=RoundingUnit.FIFTEEN_MINUTES,
            rounding_direction=RoundingDirection.NEAREST,
            min_duration_enabled=True,
            min_duration_seconds=5 * MINUTE,
            auto_approve_enabled=True,
            auto_approve_max_hours=12,
        )
        outcome = process_clock_out(8 * HOUR + 45 * MINUTE, rules)

        self.assertEqual(outcome.raw_duration, 8 * HOUR + 45 * MINUTE)
        self.assertEqual(outcome.break_deducted, 30 * MINUTE)
        self.assertEqual(outcome.final_duration, 8 * HOUR + 15 * MINUTE)
        self.assertEqual(outcome.status, EntryStatus.APPROVED)
        self.assertTrue(outcome.auto_approved)
        self.assertTrue(outcome.is_locked)
        self.assertIsNotNone(outcome.approver)
        self.assertTrue(outcome.approver.is_system)
        self.assertIsNone(outcome.flag_reason)

    def test_short_session_below_minimum_is_auto_rejected(self) -> None:
        rules = _rules(min_duration_enabled=True, min_duration_seconds=5 * MINUTE)
        outcome = process_clock_out(3 * MINUTE, rules)

        self.assertEqual(outcome.flag_reason, FLAG_BELOW_MINIMUM)
        self.assertEqual(outcome.status, EntryStatus.REJECTED)
        self.assertEqual(outcome.rejected_note, "Auto-rejected: duration (3m) below minimum threshold (5m)")
        self.assertFalse(outcome.is_locked)
        self.assertIsNone(outcome.approver)

    def test_flag_action_leaves_entry_pending(self) -> None:
        rules = _rules(
            max_duration_enabled=True,
            max_duration_hours=16,
            max_duration_action=DurationAction.FLAG,
            auto_approve_enabled=True,
            auto_approve_max_hours=24,
        )
        outcome = process_clock_out(17 * HOUR, rules)
        self.assertEqual(outcome.flag_reason, FLAG_ABOVE_MAXIMUM)
        self.assertEqual(outcome.status, EntryStatus.PENDING)
        self.assertFalse(outcome.auto_approved)
        self.assertIsNone(outcome.rejected_note)

    def test_non_positive_duration_is_flagged_and_pending(self) -> None:
        rules = _rules(
            min_duration_enabled=True,
            min_duration_seconds=60,
            auto_approve_enabled=True,
        )
        outcome = process_clock_out(-5, rules)
        self.assertEqual(outcome.raw_duration, 0)
        self.assertEqual(outcome.final_duration, 0)
        self.assertEqual(outcome.flag_reason, FLAG_NON_POSITIVE_DURATION)
        self.assertEqual(outcome.status, EntryStatus.PENDING)
        self.assertFalse(outcome.is_locked)

    def test_without_auto_approve_entry_stays_pending(self) -> None:
        outcome = process_clock_out(8 * HOUR, _rules())
        self.assertEqual(outcome.status, EntryStatus.PENDING)
        self.assertIsNone(outcome.break_deducted)
        self.assertEqual(outcome.review_reason, "auto-approve disabled")

    def test_pipeline_is_deterministic(self) -> None:
        rules = _rules(
            break_deduction_enabled=True,
            break_rules=(BreakRule(240, 15), BreakRule(360, 30)),
            rounding_unit=RoundingUnit.SIX_MINUTES,
            rounding_direction=RoundingDirection.NEAREST,
            min_duration_enabled=True,
            min_duration_seconds=5 * MINUTE,
            auto_approve_enabled=True,
        )
        overtime = OvertimeSnapshot(daily_threshold_minutes=480)
        for raw in (-1, 0, 100, 299, 5 * HOUR + 17, 9 * HOUR + 1):
            self.assertEqual(process_clock_out(raw, rules, overtime), process_clock_out(raw, rules, overtime))


if __name__ == "__main__":
    unittest.main()
