from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

from sqlalchemy import select, update
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from timeclock.audit import log_audit
from timeclock.errors import (
    AuthorizationError,
    ConflictError,
    TransientError,
    ValidationFailedError,
)
from timeclock.models import ApproverKind, AuditActorType, EntryStatus, TimeclockEntry
from timeclock.security import CurrentUser
from timeclock.services.directory import DepartmentScope
from timeclock.services.entries import entry_department_id, load_entry
from timeclock.services.pay_period_locks import is_within_locked_period
from timeclock.services.time_windows import normalize_ts

logger = logging.getLogger("timeclock.approvals")

SKIP_ALREADY_APPROVED = "already approved"
SKIP_LOCKED = "locked"
SKIP_ACTIVE_ENTRY = "active entry (no clock out)"
SKIP_PAY_PERIOD_LOCKED = "pay period locked"
FAIL_NOT_FOUND = "not found"
FAIL_NOT_IN_DEPARTMENT = "not in assigned department"
FAIL_UPDATE_ERROR = "update failed"

ItemOutcome = Literal["approved", "skipped", "failed"]


@dataclass(frozen=True, slots=True)
class BulkItemResult:
    id: int
    status: ItemOutcome
    reason: str | None = None


@dataclass(slots=True)
class BulkApproveResult:
    approved: int = 0
    skipped: int = 0
    failed: int = 0
    details: list[BulkItemResult] = field(default_factory=list)

    def record(self, entry_id: int, status: ItemOutcome, reason: str | None = None) -> None:
        if status == "approved":
            self.approved += 1
        elif status == "skipped":
            self.skipped += 1
        else:
            self.failed += 1
        self.details.append(BulkItemResult(id=entry_id, status=status, reason=reason))

    @property
    def message(self) -> str:
        return (
            f"Bulk approval complete: {self.approved} approved, "
            f"{self.skipped} skipped, {self.failed} failed"
        )


def _state_snapshot(entry: TimeclockEntry) -> dict[str, Any]:
    return {"status": EntryStatus(entry.status).value, "is_locked": bool(entry.is_locked)}


def _approve_values(approver: CurrentUser, ts: datetime) -> dict[str, Any]:
    return {
        "status": EntryStatus.APPROVED,
        "approved_by_kind": ApproverKind.HUMAN,
        "approved_by_user_id": approver.id,
        "approved_at": ts,
        "is_locked": True,
        "rejected_note": None,
        "updated_at": ts,
    }


def _approvable_guard(entry_id: int) -> tuple[Any, ...]:
    return (
        TimeclockEntry.id == entry_id,
        TimeclockEntry.clock_out.is_not(None),
        TimeclockEntry.is_locked.is_(False),
        TimeclockEntry.status != EntryStatus.APPROVED,
    )


def _audit_approved(
    db: Session,
    *,
    entry: TimeclockEntry,
    before: dict[str, Any],
    approver: CurrentUser,
    ts: datetime,
    request_id: str | None,
    bulk: bool = False,
) -> None:
    log_audit(
        db,
        actor_type=AuditActorType.USER,
        actor_id=str(approver.id),
        action="TIMECLOCK_ENTRY_APPROVED",
        entity_type="timeclock_entry",
        entity_id=str(entry.id),
        before=before,
        after={
            "status": EntryStatus.APPROVED.value,
            "is_locked": True,
            "approved_by": approver.id,
            "approved_at": ts.isoformat(),
        },
        details={"user_id": entry.user_id, "bulk_operation": bulk},
        request_id=request_id,
    )


def approve_entry(
    db: Session,
    *,
    entry_id: int,
    approver: CurrentUser,
    scope: DepartmentScope,
    now: datetime | None = None,
    request_id: str | None = None,
) -> TimeclockEntry:
    ts = normalize_ts(now)
    try:
        entry = load_entry(db, entry_id)
        if entry.clock_out is None:
            raise ConflictError("ACTIVE_ENTRY", "Cannot approve active entries. Please wait for clock out.")
        if entry.status == EntryStatus.APPROVED:
            raise ConflictError("ALREADY_APPROVED", "Entry is already approved.")
        if entry.is_locked:
            raise ConflictError("ENTRY_LOCKED", "Entry is locked.")
        if not scope.covers(entry_department_id(entry)):
            raise AuthorizationError(
                "NOT_AUTHORIZED_FOR_DEPARTMENT",
                "You can only approve entries in your assigned departments.",
            )
        if is_within_locked_period(db, entry.clock_in):
            raise ConflictError("PAY_PERIOD_LOCKED", "Entry falls inside a locked pay period.")

        before = _state_snapshot(entry)
        result = db.execute(
            update(TimeclockEntry)
            .where(*_approvable_guard(entry.id))
            .values(**_approve_values(approver, ts))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            db.rollback()
            raise ConflictError("ALREADY_APPROVED", "Entry was approved or locked concurrently.")
        db.commit()
    except OperationalError as exc:
        db.rollback()
        raise TransientError() from exc

    db.refresh(entry)
    logger.info("entry_approved", extra={"entry_id": entry.id, "approver_id": approver.id})
    _audit_approved(db, entry=entry, before=before, approver=approver, ts=ts, request_id=request_id)
    return entry


def reject_entry(
    db: Session,
    *,
    entry_id: int,
    approver: CurrentUser,
    scope: DepartmentScope,
    note: str | None,
    now: datetime | None = None,
    request_id: str | None = None,
) -> TimeclockEntry:
    cleaned_note = (note or "").strip()
    if not cleaned_note:
        raise ValidationFailedError("REJECTION_NOTE_REQUIRED", "Rejection note is required.")

    ts = normalize_ts(now)
    try:
        entry = load_entry(db, entry_id)
        if entry.clock_out is None:
            raise ConflictError("ACTIVE_ENTRY", "Cannot reject active entries. Please wait for clock out.")
        if entry.is_locked or entry.status == EntryStatus.APPROVED:
            raise ConflictError("ENTRY_LOCKED", "Approved entries are locked.")
        if not scope.covers(entry_department_id(entry)):
            raise AuthorizationError(
                "NOT_AUTHORIZED_FOR_DEPARTMENT",
                "You can only reject entries in your assigned departments.",
            )
        if is_within_locked_period(db, entry.clock_in):
            raise ConflictError("PAY_PERIOD_LOCKED", "Entry falls inside a locked pay period.")

        before = _state_snapshot(entry)
        result = db.execute(
            update(TimeclockEntry)
            .where(
                TimeclockEntry.id == entry.id,
                TimeclockEntry.clock_out.is_not(None),
                TimeclockEntry.is_locked.is_(False),
                TimeclockEntry.status != EntryStatus.APPROVED,
            )
            .values(
                status=EntryStatus.REJECTED,
                rejected_note=cleaned_note,
                approved_by_kind=None,
                approved_by_user_id=None,
                approved_at=None,
                is_locked=False,
                updated_at=ts,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            db.rollback()
            raise ConflictError("ENTRY_LOCKED", "Entry was approved concurrently.")
        db.commit()
    except OperationalError as exc:
        db.rollback()
        raise TransientError() from exc

    db.refresh(entry)
    logger.info("entry_rejected", extra={"entry_id": entry.id, "approver_id": approver.id})
    log_audit(
        db,
        actor_type=AuditActorType.USER,
        actor_id=str(approver.id),
        action="TIMECLOCK_ENTRY_REJECTED",
        entity_type="timeclock_entry",
        entity_id=str(entry.id),
        before=before,
        after={"status": EntryStatus.REJECTED.value, "is_locked": False, "rejected_note": cleaned_note},
        details={"user_id": entry.user_id},
        request_id=request_id,
    )
    return entry


def bulk_approve(
    db: Session,
    *,
    entry_ids: list[int],
    approver: CurrentUser,
    scope: DepartmentScope,
    now: datetime | None = None,
    request_id: str | None = None,
) -> BulkApproveResult:
    """Approve many entries in one transaction; every id gets its own outcome.

    Each entry update runs in a savepoint so a failing item never leaves a
    half-written row and never aborts the rest of the batch.
    """
    if not entry_ids:
        raise ValidationFailedError("INVALID_ENTRY_IDS", "entry_ids must be a non-empty list.")
    if not scope.unrestricted and not scope.department_ids:
        raise AuthorizationError("NO_DEPARTMENT_ASSIGNMENTS", "You have no department assignments.")

    ts = normalize_ts(now)
    ordered_ids = list(dict.fromkeys(entry_ids))
    result = BulkApproveResult()
    approved_entries: list[tuple[TimeclockEntry, dict[str, Any]]] = []

    try:
        entries = {
            entry.id: entry
            for entry in db.scalars(
                select(TimeclockEntry)
                .options(selectinload(TimeclockEntry.user))
                .where(TimeclockEntry.id.in_(ordered_ids))
            ).all()
        }

        for entry_id in ordered_ids:
            entry = entries.get(entry_id)
            if entry is None:
                result.record(entry_id, "failed", FAIL_NOT_FOUND)
                continue
            if entry.is_locked:
                result.record(entry_id, "skipped", SKIP_LOCKED)
                continue
            if entry.status == EntryStatus.APPROVED:
                result.record(entry_id, "skipped", SKIP_ALREADY_APPROVED)
                continue
            if entry.clock_out is None:
                result.record(entry_id, "skipped", SKIP_ACTIVE_ENTRY)
                continue
            if not scope.covers(entry_department_id(entry)):
                result.record(entry_id, "failed", FAIL_NOT_IN_DEPARTMENT)
                continue
            if is_within_locked_period(db, entry.clock_in):
                result.record(entry_id, "skipped", SKIP_PAY_PERIOD_LOCKED)
                continue

            before = _state_snapshot(entry)
            try:
                with db.begin_nested():
                    updated = db.execute(
                        update(TimeclockEntry)
                        .where(*_approvable_guard(entry.id))
                        .values(**_approve_values(approver, ts))
                        .execution_options(synchronize_session=False)
                    )
            except OperationalError:
                raise
            except SQLAlchemyError:
                logger.exception("bulk_approve_item_failed", extra={"entry_id": entry_id})
                result.record(entry_id, "failed", FAIL_UPDATE_ERROR)
                continue

            if updated.rowcount == 0:
                result.record(entry_id, "skipped", SKIP_ALREADY_APPROVED)
                continue
            result.record(entry_id, "approved")
            approved_entries.append((entry, before))

        db.commit()
    except OperationalError as exc:
        db.rollback()
        raise TransientError() from exc

    logger.info(
        "bulk_approve_complete",
        extra={
            "approver_id": approver.id,
            "approved": result.approved,
            "skipped": result.skipped,
            "failed": result.failed,
        },
    )
    for entry, before in approved_entries:
        _audit_approved(
            db,
            entry=entry,
            before=before,
            approver=approver,
            ts=ts,
            request_id=request_id,
            bulk=True,
        )
    return result
