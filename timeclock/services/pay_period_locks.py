from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from timeclock.errors import NotFoundError, ValidationFailedError
from timeclock.models import PayPeriodLock
from timeclock.services.time_windows import normalize_ts


@dataclass(frozen=True, slots=True)
class PayPeriodLockStatus:
    is_locked: bool
    lock: PayPeriodLock | None = None


def _validate_period(period_start: datetime, period_end: datetime) -> tuple[datetime, datetime]:
    start = normalize_ts(period_start)
    end = normalize_ts(period_end)
    if end < start:
        raise ValidationFailedError("INVALID_PERIOD", "period_end must be greater than or equal to period_start.")
    return start, end


def _find_lock(db: Session, start: datetime, end: datetime) -> PayPeriodLock | None:
    return db.scalar(
        select(PayPeriodLock).where(
            PayPeriodLock.period_start == start,
            PayPeriodLock.period_end == end,
        )
    )


def get_pay_period_lock_status(db: Session, *, period_start: datetime, period_end: datetime) -> PayPeriodLockStatus:
    start, end = _validate_period(period_start, period_end)
    lock = _find_lock(db, start, end)
    if lock is None or not lock.is_active:
        return PayPeriodLockStatus(is_locked=False)
    return PayPeriodLockStatus(is_locked=True, lock=lock)


def lock_pay_period(db: Session, *, period_start: datetime, period_end: datetime, locked_by: int) -> PayPeriodLock:
    start, end = _validate_period(period_start, period_end)
    lock = _find_lock(db, start, end)
    now_utc = datetime.now(timezone.utc)
    if lock is None:
        lock = PayPeriodLock(period_start=start, period_end=end, locked_by=locked_by, locked_at=now_utc)
        db.add(lock)
    else:
        lock.is_active = True
        lock.locked_by = locked_by
        lock.locked_at = now_utc
    db.commit()
    db.refresh(lock)
    return lock


def unlock_pay_period(db: Session, *, period_start: datetime, period_end: datetime) -> PayPeriodLock:
    start, end = _validate_period(period_start, period_end)
    lock = _find_lock(db, start, end)
    if lock is None:
        raise NotFoundError("PAY_PERIOD_LOCK_NOT_FOUND", "Pay period lock not found.")
    lock.is_active = False
    db.commit()
    db.refresh(lock)
    return lock


def is_within_locked_period(db: Session, ts: datetime) -> bool:
    moment = normalize_ts(ts)
    return (
        db.scalar(
            select(PayPeriodLock.id).where(
                PayPeriodLock.is_active.is_(True),
                PayPeriodLock.period_start <= moment,
                PayPeriodLock.period_end >= moment,
            ).limit(1)
        )
        is not None
    )
