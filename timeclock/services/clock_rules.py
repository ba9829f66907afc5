"""Clock-out rules pipeline.

Pure functions only: break deduction -> rounding -> duration bounds ->
disposition. Nothing here touches the store or the clock, so the same
``(raw duration, rules, overtime)`` input always yields the same outcome.
"""

from __future__ import annotations

from dataclasses import dataclass

from timeclock.models import Approver, DurationAction, EntryStatus, RoundingDirection, RoundingUnit
from timeclock.services.rules_config import OvertimeSnapshot, RulesSnapshot

FLAG_BELOW_MINIMUM = "BELOW_MINIMUM"
FLAG_ABOVE_MAXIMUM = "ABOVE_MAXIMUM"
FLAG_NON_POSITIVE_DURATION = "NON_POSITIVE_DURATION"

ROUNDING_UNIT_SECONDS: dict[RoundingUnit, int] = {
    RoundingUnit.NONE: 0,
    RoundingUnit.ONE_MINUTE: 60,
    RoundingUnit.FIVE_MINUTES: 300,
    RoundingUnit.SIX_MINUTES: 360,
    RoundingUnit.SEVEN_MINUTES: 420,
    RoundingUnit.FIFTEEN_MINUTES: 900,
}


@dataclass(frozen=True, slots=True)
class BoundsCheck:
    passed: bool
    flag_reason: str | None = None
    action: DurationAction | None = None


@dataclass(frozen=True, slots=True)
class AutoApproveDecision:
    should_auto_approve: bool
    reason: str | None = None


@dataclass(frozen=True, slots=True)
class ClockOutOutcome:
    raw_duration: int
    final_duration: int
    break_deducted: int | None
    flag_reason: str | None
    auto_approved: bool
    status: EntryStatus
    rejected_note: str | None
    approver: Approver | None
    is_locked: bool
    review_reason: str | None = None


def _format_minutes(seconds: int) -> str:
    return f"{seconds // 60}m"


def apply_break_deduction(duration_seconds: int, rules: RulesSnapshot) -> tuple[int, int]:
    """Return ``(deducted_seconds, adjusted_duration)``.

    The bracket with the largest threshold strictly below the duration wins.
    """
    if not rules.break_deduction_enabled or not rules.break_rules:
        return 0, duration_seconds

    matched = None
    for rule in rules.break_rules:
        if duration_seconds > rule.after_minutes * 60:
            if matched is None or rule.after_minutes >= matched.after_minutes:
                matched = rule
    if matched is None:
        return 0, duration_seconds

    adjusted = max(0, duration_seconds - matched.deduct_minutes * 60)
    return duration_seconds - adjusted, adjusted


def apply_rounding(duration_seconds: int, unit: RoundingUnit, direction: RoundingDirection) -> int:
    """Round to the unit. ``nearest`` resolves exact halves upward."""
    interval = ROUNDING_UNIT_SECONDS.get(unit, 0)
    if interval <= 0 or duration_seconds <= 0:
        return max(0, duration_seconds)

    if direction == RoundingDirection.DOWN:
        return (duration_seconds // interval) * interval
    if direction == RoundingDirection.UP:
        return -(-duration_seconds // interval) * interval
    return ((2 * duration_seconds + interval) // (2 * interval)) * interval


def check_duration_bounds(duration_seconds: int, rules: RulesSnapshot) -> BoundsCheck:
    if rules.min_duration_enabled and duration_seconds < rules.min_duration_seconds:
        return BoundsCheck(passed=False, flag_reason=FLAG_BELOW_MINIMUM, action=rules.min_duration_action)

    if rules.max_duration_enabled and duration_seconds > int(rules.max_duration_hours * 3600):
        return BoundsCheck(passed=False, flag_reason=FLAG_ABOVE_MAXIMUM, action=rules.max_duration_action)

    return BoundsCheck(passed=True)


def check_auto_approve(
    duration_seconds: int,
    rules: RulesSnapshot,
    overtime: OvertimeSnapshot | None = None,
) -> AutoApproveDecision:
    if not rules.auto_approve_enabled:
        return AutoApproveDecision(False, "auto-approve disabled")
    if duration_seconds <= 0:
        return AutoApproveDecision(False, "zero duration")

    duration_hours = duration_seconds / 3600
    if duration_hours < rules.auto_approve_min_hours:
        return AutoApproveDecision(False, "below minimum hours")
    if duration_hours > rules.auto_approve_max_hours:
        return AutoApproveDecision(False, "exceeds maximum hours")

    if (
        rules.auto_approve_block_on_overtime
        and overtime is not None
        and overtime.daily_threshold_minutes is not None
        and duration_seconds > overtime.daily_threshold_minutes * 60
    ):
        return AutoApproveDecision(False, "triggers daily overtime")

    return AutoApproveDecision(True)


def _rejection_note(flag_reason: str, final_duration: int, rules: RulesSnapshot) -> str:
    if flag_reason == FLAG_BELOW_MINIMUM:
        return (
            f"Auto-rejected: duration ({_format_minutes(final_duration)}) below minimum threshold "
            f"({_format_minutes(rules.min_duration_seconds)})"
        )
    return (
        f"Auto-rejected: duration ({_format_minutes(final_duration)}) exceeds maximum plausible duration "
        f"({_format_minutes(int(rules.max_duration_hours * 3600))})"
    )


def process_clock_out(
    raw_duration_seconds: int,
    rules: RulesSnapshot,
    overtime: OvertimeSnapshot | None = None,
) -> ClockOutOutcome:
    non_positive = raw_duration_seconds <= 0
    raw_duration = max(0, int(raw_duration_seconds))

    deducted, adjusted = apply_break_deduction(raw_duration, rules)
    final_duration = apply_rounding(adjusted, rules.rounding_unit, rules.rounding_direction)
    break_deducted = deducted or None

    if non_positive:
        # Clock skew: never auto-decide a zero-length session.
        return ClockOutOutcome(
            raw_duration=raw_duration,
            final_duration=final_duration,
            break_deducted=break_deducted,
            flag_reason=FLAG_NON_POSITIVE_DURATION,
            auto_approved=False,
            status=EntryStatus.PENDING,
            rejected_note=None,
            approver=None,
            is_locked=False,
            review_reason="non-positive raw duration",
        )

    bounds = check_duration_bounds(final_duration, rules)
    flag_reason = bounds.flag_reason
    if flag_reason is not None:
        if bounds.action == DurationAction.REJECT:
            return ClockOutOutcome(
                raw_duration=raw_duration,
                final_duration=final_duration,
                break_deducted=break_deducted,
                flag_reason=flag_reason,
                auto_approved=False,
                status=EntryStatus.REJECTED,
                rejected_note=_rejection_note(flag_reason, final_duration, rules),
                approver=None,
                is_locked=False,
            )
        return ClockOutOutcome(
            raw_duration=raw_duration,
            final_duration=final_duration,
            break_deducted=break_deducted,
            flag_reason=flag_reason,
            auto_approved=False,
            status=EntryStatus.PENDING,
            rejected_note=None,
            approver=None,
            is_locked=False,
            review_reason="flagged for review",
        )

    decision = check_auto_approve(final_duration, rules, overtime)
    if decision.should_auto_approve:
        return ClockOutOutcome(
            raw_duration=raw_duration,
            final_duration=final_duration,
            break_deducted=break_deducted,
            flag_reason=None,
            auto_approved=True,
            status=EntryStatus.APPROVED,
            rejected_note=None,
            approver=Approver.system(),
            is_locked=True,
        )

    return ClockOutOutcome(
        raw_duration=raw_duration,
        final_duration=final_duration,
        break_deducted=break_deducted,
        flag_reason=None,
        auto_approved=False,
        status=EntryStatus.PENDING,
        rejected_note=None,
        approver=None,
        is_locked=False,
        review_reason=decision.reason,
    )
