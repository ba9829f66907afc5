from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, selectinload

from timeclock.audit import log_audit
from timeclock.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    TransientError,
    ValidationFailedError,
)
from timeclock.models import AuditActorType, EntryStatus, TimeclockEntry, User
from timeclock.security import CurrentUser
from timeclock.services.clock_rules import apply_break_deduction, apply_rounding
from timeclock.services.directory import DepartmentScope
from timeclock.services.pay_period_locks import is_within_locked_period
from timeclock.services.rules_config import RulesSnapshot
from timeclock.services.time_windows import normalize_ts

logger = logging.getLogger("timeclock.entries")


def load_entry(db: Session, entry_id: int) -> TimeclockEntry:
    entry = db.scalar(
        select(TimeclockEntry)
        .options(selectinload(TimeclockEntry.user).selectinload(User.department))
        .where(TimeclockEntry.id == entry_id)
    )
    if entry is None:
        raise NotFoundError("ENTRY_NOT_FOUND", "Entry not found.")
    return entry


def entry_department_id(entry: TimeclockEntry) -> int | None:
    return entry.user.department_id if entry.user is not None else None


def get_entry(
    db: Session,
    *,
    entry_id: int,
    viewer: CurrentUser,
    scope: DepartmentScope | None,
) -> TimeclockEntry:
    """Own entries are always visible; others need a scope covering the owner's department.

    ``scope`` is None when the viewer holds no team or all-entries capability.
    """
    entry = load_entry(db, entry_id)
    if entry.user_id == viewer.id:
        return entry
    if scope is None:
        raise AuthorizationError("INSUFFICIENT_CAPABILITY", "Insufficient permissions.")
    if not scope.covers(entry_department_id(entry)):
        raise AuthorizationError(
            "NOT_AUTHORIZED_FOR_DEPARTMENT",
            "You can only view entries in your assigned departments.",
        )
    return entry


def _times_snapshot(clock_in: datetime, clock_out: datetime | None, duration: int | None) -> dict[str, Any]:
    return {
        "clock_in": normalize_ts(clock_in).isoformat(),
        "clock_out": normalize_ts(clock_out).isoformat() if clock_out is not None else None,
        "duration": duration,
    }


def edit_entry(
    db: Session,
    *,
    entry_id: int,
    editor: CurrentUser,
    scope: DepartmentScope,
    rules: RulesSnapshot,
    clock_in: datetime | None = None,
    clock_out: datetime | None = None,
    now: datetime | None = None,
    request_id: str | None = None,
    ip: str | None = None,
    user_agent: str | None = None,
) -> TimeclockEntry:
    """Correct the punch times of an unlocked entry.

    Setting ``clock_out`` on an open entry closes a missed punch. Break
    deduction and rounding are recomputed from the corrected times; the
    review status is left for the approval workflow.
    """
    if clock_in is None and clock_out is None:
        raise ValidationFailedError("INVALID_ENTRY_EDIT", "At least one of clock_in or clock_out is required.")

    changed_fields = [name for name, value in (("clock_in", clock_in), ("clock_out", clock_out)) if value is not None]
    ts = normalize_ts(now)
    try:
        entry = load_entry(db, entry_id)
        if entry.is_locked or entry.status == EntryStatus.APPROVED:
            raise ConflictError("ENTRY_LOCKED", "Cannot edit locked entries.")
        if not scope.covers(entry_department_id(entry)):
            raise AuthorizationError(
                "NOT_AUTHORIZED_FOR_DEPARTMENT",
                "You can only edit entries in your assigned departments.",
            )

        new_clock_in = normalize_ts(clock_in) if clock_in is not None else normalize_ts(entry.clock_in)
        if clock_out is not None:
            new_clock_out: datetime | None = normalize_ts(clock_out)
        elif entry.clock_out is not None:
            new_clock_out = normalize_ts(entry.clock_out)
        else:
            new_clock_out = None

        if new_clock_in > ts or (new_clock_out is not None and new_clock_out > ts):
            raise ValidationFailedError("INVALID_ENTRY_TIMES", "Entry times cannot be in the future.")
        if new_clock_out is not None and new_clock_out < new_clock_in:
            raise ValidationFailedError("INVALID_ENTRY_TIMES", "Clock out time cannot be before clock in time.")
        if is_within_locked_period(db, entry.clock_in) or is_within_locked_period(db, new_clock_in):
            raise ConflictError("PAY_PERIOD_LOCKED", "Entry falls inside a locked pay period.")

        before = _times_snapshot(entry.clock_in, entry.clock_out, entry.duration)
        values: dict[str, Any] = {
            "clock_in": new_clock_in,
            "clock_out": new_clock_out,
            "last_edited_by_user_id": editor.id,
            "last_edited_at": ts,
            "updated_at": ts,
        }
        if new_clock_out is not None:
            raw_duration = int((new_clock_out - new_clock_in).total_seconds())
            deducted, adjusted = apply_break_deduction(raw_duration, rules)
            values["raw_duration"] = raw_duration
            values["break_deducted"] = deducted or None
            values["duration"] = apply_rounding(adjusted, rules.rounding_unit, rules.rounding_direction)

        guard = [
            TimeclockEntry.id == entry.id,
            TimeclockEntry.is_locked.is_(False),
            TimeclockEntry.status != EntryStatus.APPROVED,
        ]
        if entry.clock_out is None:
            # Closing a missed punch must not overwrite the employee's own clock-out.
            guard.append(TimeclockEntry.clock_out.is_(None))

        result = db.execute(
            update(TimeclockEntry).where(*guard).values(**values).execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            db.rollback()
            raise ConflictError("ENTRY_LOCKED", "Entry was locked or closed concurrently.")
        db.commit()
    except OperationalError as exc:
        db.rollback()
        raise TransientError() from exc

    db.refresh(entry)
    logger.info(
        "entry_edited",
        extra={"entry_id": entry.id, "editor_id": editor.id, "duration": entry.duration},
    )
    log_audit(
        db,
        actor_type=AuditActorType.USER,
        actor_id=str(editor.id),
        action="TIMECLOCK_ENTRY_EDITED",
        entity_type="timeclock_entry",
        entity_id=str(entry.id),
        ip=ip,
        user_agent=user_agent,
        before=before,
        after=_times_snapshot(entry.clock_in, entry.clock_out, entry.duration),
        details={"user_id": entry.user_id, "changed_fields": changed_fields},
        request_id=request_id,
    )
    return entry
