from __future__ import annotations

import logging
import threading
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Callable

from sqlalchemy import select
from sqlalchemy.orm import Session

from timeclock.errors import ValidationFailedError
from timeclock.models import (
    DurationAction,
    OvertimeConfig,
    RoundingDirection,
    RoundingUnit,
    TimeclockRulesConfig,
)

logger = logging.getLogger("timeclock.config")

NON_NULLABLE_OVERTIME_FIELDS = ("notify_employee", "notify_manager")


@dataclass(frozen=True, slots=True)
class BreakRule:
    after_minutes: int
    deduct_minutes: int


@dataclass(frozen=True, slots=True)
class RulesSnapshot:
    """Immutable view of the tenant rules, read as a whole per evaluation."""

    break_deduction_enabled: bool = False
    break_rules: tuple[BreakRule, ...] = ()
    rounding_unit: RoundingUnit = RoundingUnit.NONE
    rounding_direction: RoundingDirection = RoundingDirection.NEAREST
    min_duration_enabled: bool = False
    min_duration_seconds: int = 60
    min_duration_action: DurationAction = DurationAction.REJECT
    max_duration_enabled: bool = False
    max_duration_hours: float = 16.0
    max_duration_action: DurationAction = DurationAction.FLAG
    auto_approve_enabled: bool = False
    auto_approve_min_hours: float = 0.0
    auto_approve_max_hours: float = 12.0
    auto_approve_block_on_overtime: bool = True
    missed_punch_enabled: bool = True
    missed_punch_threshold_hours: float = 12.0

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["rounding_unit"] = self.rounding_unit.value
        payload["rounding_direction"] = self.rounding_direction.value
        payload["min_duration_action"] = self.min_duration_action.value
        payload["max_duration_action"] = self.max_duration_action.value
        payload["break_rules"] = [asdict(rule) for rule in self.break_rules]
        return payload


@dataclass(frozen=True, slots=True)
class OvertimeSnapshot:
    daily_threshold_minutes: int | None = None
    weekly_threshold_minutes: int | None = None
    alert_before_daily_minutes: int | None = None
    alert_before_weekly_minutes: int | None = None
    notify_employee: bool = True
    notify_manager: bool = True

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _parse_break_rules(raw: Any) -> tuple[BreakRule, ...]:
    rules: list[BreakRule] = []
    if not isinstance(raw, list):
        return ()
    for item in raw:
        if not isinstance(item, dict):
            continue
        try:
            after_minutes = int(item["after_minutes"])
            deduct_minutes = int(item["deduct_minutes"])
        except (KeyError, TypeError, ValueError):
            continue
        if after_minutes < 0 or deduct_minutes < 0:
            continue
        rules.append(BreakRule(after_minutes=after_minutes, deduct_minutes=deduct_minutes))
    return tuple(sorted(rules, key=lambda rule: rule.after_minutes))


def rules_snapshot_from_row(row: TimeclockRulesConfig) -> RulesSnapshot:
    return RulesSnapshot(
        break_deduction_enabled=bool(row.break_deduction_enabled),
        break_rules=_parse_break_rules(row.break_rules),
        rounding_unit=RoundingUnit(row.rounding_unit),
        rounding_direction=RoundingDirection(row.rounding_direction),
        min_duration_enabled=bool(row.min_duration_enabled),
        min_duration_seconds=int(row.min_duration_seconds),
        min_duration_action=DurationAction(row.min_duration_action),
        max_duration_enabled=bool(row.max_duration_enabled),
        max_duration_hours=float(row.max_duration_hours),
        max_duration_action=DurationAction(row.max_duration_action),
        auto_approve_enabled=bool(row.auto_approve_enabled),
        auto_approve_min_hours=float(row.auto_approve_min_hours),
        auto_approve_max_hours=float(row.auto_approve_max_hours),
        auto_approve_block_on_overtime=bool(row.auto_approve_block_on_overtime),
        missed_punch_enabled=bool(row.missed_punch_enabled),
        missed_punch_threshold_hours=float(row.missed_punch_threshold_hours),
    )


def _overtime_snapshot(row: OvertimeConfig) -> OvertimeSnapshot:
    return OvertimeSnapshot(
        daily_threshold_minutes=row.daily_threshold_minutes,
        weekly_threshold_minutes=row.weekly_threshold_minutes,
        alert_before_daily_minutes=row.alert_before_daily_minutes,
        alert_before_weekly_minutes=row.alert_before_weekly_minutes,
        notify_employee=bool(row.notify_employee),
        notify_manager=bool(row.notify_manager),
    )


def overtime_snapshot_from_row(row: OvertimeConfig | None) -> OvertimeSnapshot | None:
    if row is None:
        return None
    return _overtime_snapshot(row)


def _get_or_create_rules_row(db: Session) -> TimeclockRulesConfig:
    row = db.scalar(select(TimeclockRulesConfig).order_by(TimeclockRulesConfig.id.asc()))
    if row is None:
        row = TimeclockRulesConfig(break_rules=[])
        db.add(row)
        db.commit()
        db.refresh(row)
    return row


@dataclass
class _CacheSlot:
    value: RulesSnapshot | None = None
    loaded_at: float = 0.0
    generation: int = 0
    lock: threading.Lock = field(default_factory=threading.Lock)


class RulesConfigStore:
    """Process-scoped TTL cache over the rules singleton.

    One instance per application (kept on ``app.state``); tests build their own.
    """

    def __init__(self, ttl_seconds: float = 30.0, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl_seconds = max(0.0, float(ttl_seconds))
        self._clock = clock
        self._slot = _CacheSlot()

    def get_snapshot(self, db: Session) -> RulesSnapshot:
        now = self._clock()
        with self._slot.lock:
            cached = self._slot.value
            if cached is not None and now - self._slot.loaded_at < self._ttl_seconds:
                return cached
            generation = self._slot.generation

        snapshot = rules_snapshot_from_row(_get_or_create_rules_row(db))
        with self._slot.lock:
            # An invalidate() during the read means this snapshot may predate the update.
            if self._slot.generation != generation:
                return snapshot
            self._slot.value = snapshot
            self._slot.loaded_at = now
        logger.debug("rules_config_cache_refreshed")
        return snapshot

    def invalidate(self) -> None:
        with self._slot.lock:
            self._slot.value = None
            self._slot.loaded_at = 0.0
            self._slot.generation += 1
        logger.info("rules_config_cache_invalidated")


def _validate_rules_values(values: dict[str, Any]) -> None:
    min_hours = values.get("auto_approve_min_hours")
    max_hours = values.get("auto_approve_max_hours")
    if min_hours is not None and max_hours is not None and float(min_hours) > float(max_hours):
        raise ValidationFailedError(
            "INVALID_CONFIG",
            "auto_approve_min_hours must be less than or equal to auto_approve_max_hours.",
        )


def update_rules_config(
    db: Session,
    store: RulesConfigStore,
    *,
    changes: dict[str, Any],
) -> tuple[RulesSnapshot, RulesSnapshot]:
    """Apply a partial update. Returns (before, after) snapshots."""
    row = _get_or_create_rules_row(db)
    before = rules_snapshot_from_row(row)

    merged = before.to_dict()
    merged.update(changes)
    _validate_rules_values(merged)

    for key, value in changes.items():
        if key == "break_rules":
            value = [
                {"after_minutes": int(item["after_minutes"]), "deduct_minutes": int(item["deduct_minutes"])}
                for item in value
            ]
        setattr(row, key, value)

    db.commit()
    db.refresh(row)
    store.invalidate()
    return before, rules_snapshot_from_row(row)


def get_overtime_config(db: Session) -> OvertimeSnapshot | None:
    row = db.scalar(select(OvertimeConfig).order_by(OvertimeConfig.id.asc()))
    return overtime_snapshot_from_row(row)


def update_overtime_config(
    db: Session,
    *,
    changes: dict[str, Any],
) -> tuple[OvertimeSnapshot | None, OvertimeSnapshot]:
    for key in NON_NULLABLE_OVERTIME_FIELDS:
        if key in changes and changes[key] is None:
            raise ValidationFailedError("INVALID_CONFIG", f"{key} cannot be null.")

    row = db.scalar(select(OvertimeConfig).order_by(OvertimeConfig.id.asc()))
    before = overtime_snapshot_from_row(row)
    if row is None:
        row = OvertimeConfig()
        db.add(row)

    for key, value in changes.items():
        setattr(row, key, value)

    for threshold_key, margin_key in (
        ("daily_threshold_minutes", "alert_before_daily_minutes"),
        ("weekly_threshold_minutes", "alert_before_weekly_minutes"),
    ):
        threshold = getattr(row, threshold_key)
        margin = getattr(row, margin_key)
        if threshold is not None and margin is not None and margin > threshold:
            db.rollback()
            raise ValidationFailedError(
                "INVALID_CONFIG",
                f"{margin_key} cannot exceed {threshold_key}.",
            )

    db.commit()
    db.refresh(row)
    return before, _overtime_snapshot(row)
