from __future__ import annotations

import logging
import math
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from timeclock.audit import actor_from_approver, log_audit
from timeclock.errors import TransientError, already_clocked_in, not_clocked_in
from timeclock.models import Approver, ApproverKind, EntryStatus, TimeclockEntry
from timeclock.services.clock_rules import ClockOutOutcome, process_clock_out
from timeclock.services.rules_config import OvertimeSnapshot, RulesSnapshot
from timeclock.services.time_windows import normalize_ts

logger = logging.getLogger("timeclock.clock")


def get_active_entry(db: Session, *, user_id: int) -> TimeclockEntry | None:
    return db.scalar(
        select(TimeclockEntry).where(
            TimeclockEntry.user_id == user_id,
            TimeclockEntry.clock_out.is_(None),
        )
    )


def list_user_entries(
    db: Session,
    *,
    user_id: int,
    period_start: datetime | None = None,
    period_end: datetime | None = None,
) -> list[TimeclockEntry]:
    stmt = (
        select(TimeclockEntry)
        .where(TimeclockEntry.user_id == user_id)
        .order_by(TimeclockEntry.clock_in.desc(), TimeclockEntry.id.desc())
    )
    if period_start is not None:
        stmt = stmt.where(TimeclockEntry.clock_in >= normalize_ts(period_start))
    if period_end is not None:
        stmt = stmt.where(TimeclockEntry.clock_in <= normalize_ts(period_end))
    return list(db.scalars(stmt).all())


def clock_in(db: Session, *, user_id: int, now: datetime | None = None) -> TimeclockEntry:
    ts = normalize_ts(now)
    try:
        if get_active_entry(db, user_id=user_id) is not None:
            raise already_clocked_in()

        entry = TimeclockEntry(user_id=user_id, clock_in=ts, status=EntryStatus.PENDING)
        db.add(entry)
        db.commit()
    except IntegrityError as exc:
        # A concurrent clock-in won the open-session unique index.
        db.rollback()
        raise already_clocked_in() from exc
    except OperationalError as exc:
        db.rollback()
        raise TransientError() from exc

    db.refresh(entry)
    logger.info("clock_in", extra={"user_id": user_id, "entry_id": entry.id})
    return entry


def _close_values(outcome: ClockOutOutcome, ts: datetime) -> dict[str, object]:
    approver = outcome.approver
    return {
        "clock_out": ts,
        "raw_duration": outcome.raw_duration,
        "break_deducted": outcome.break_deducted,
        "duration": outcome.final_duration,
        "status": outcome.status,
        "flag_reason": outcome.flag_reason,
        "auto_approved": outcome.auto_approved,
        "rejected_note": outcome.rejected_note,
        "approved_by_kind": (
            None if approver is None else ApproverKind.SYSTEM if approver.is_system else ApproverKind.HUMAN
        ),
        "approved_by_user_id": None if approver is None else approver.user_id,
        "approved_at": ts if approver is not None else None,
        "is_locked": outcome.is_locked,
        "updated_at": ts,
    }


def clock_out(
    db: Session,
    *,
    user_id: int,
    rules: RulesSnapshot,
    overtime: OvertimeSnapshot | None = None,
    now: datetime | None = None,
    request_id: str | None = None,
) -> TimeclockEntry:
    ts = normalize_ts(now)
    try:
        entry = get_active_entry(db, user_id=user_id)
        if entry is None:
            raise not_clocked_in()

        raw_seconds = math.floor((ts - normalize_ts(entry.clock_in)).total_seconds())
        outcome = process_clock_out(raw_seconds, rules, overtime)

        # The open-session precondition is re-checked at commit time; a racing
        # close that got here first leaves zero rows to update.
        result = db.execute(
            update(TimeclockEntry)
            .where(TimeclockEntry.id == entry.id, TimeclockEntry.clock_out.is_(None))
            .values(**_close_values(outcome, ts))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            db.rollback()
            raise not_clocked_in()
        db.commit()
    except OperationalError as exc:
        db.rollback()
        raise TransientError() from exc

    db.refresh(entry)
    logger.info(
        "clock_out",
        extra={
            "user_id": user_id,
            "entry_id": entry.id,
            "raw_duration": outcome.raw_duration,
            "duration": outcome.final_duration,
            "status": outcome.status.value,
            "flag_reason": outcome.flag_reason,
            "review_reason": outcome.review_reason,
        },
    )
    _audit_disposition(db, entry=entry, outcome=outcome, request_id=request_id)
    return entry


def _audit_disposition(
    db: Session,
    *,
    entry: TimeclockEntry,
    outcome: ClockOutOutcome,
    request_id: str | None,
) -> None:
    if outcome.auto_approved:
        action = "TIMECLOCK_ENTRY_AUTO_APPROVED"
    elif outcome.status == EntryStatus.REJECTED:
        action = "TIMECLOCK_ENTRY_AUTO_REJECTED"
    else:
        return

    actor_type, actor_id = actor_from_approver(outcome.approver or Approver.system())
    log_audit(
        db,
        actor_type=actor_type,
        actor_id=actor_id,
        action=action,
        entity_type="timeclock_entry",
        entity_id=str(entry.id),
        after={
            "status": outcome.status.value,
            "duration": outcome.final_duration,
            "raw_duration": outcome.raw_duration,
            "break_deducted": outcome.break_deducted,
            "flag_reason": outcome.flag_reason,
            "rejected_note": outcome.rejected_note,
            "is_locked": outcome.is_locked,
        },
        details={"user_id": entry.user_id},
        request_id=request_id,
    )
