from __future__ import annotations

from collections.abc import Collection
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from timeclock.models import TimeclockEntry, User
from timeclock.services.rules_config import RulesSnapshot
from timeclock.services.time_windows import normalize_ts


def get_missed_punch_entries(
    db: Session,
    rules: RulesSnapshot,
    *,
    department_ids: Collection[int] | None = None,
    now: datetime | None = None,
) -> list[TimeclockEntry]:
    """Open entries older than the staleness bound, oldest first. Read only."""
    if not rules.missed_punch_enabled:
        return []
    if department_ids is not None and not department_ids:
        return []

    cutoff = normalize_ts(now) - timedelta(hours=rules.missed_punch_threshold_hours)
    stmt = (
        select(TimeclockEntry)
        .join(User, User.id == TimeclockEntry.user_id)
        .options(selectinload(TimeclockEntry.user).selectinload(User.department))
        .where(
            TimeclockEntry.clock_out.is_(None),
            TimeclockEntry.clock_in < cutoff,
        )
        .order_by(TimeclockEntry.clock_in.asc(), TimeclockEntry.id.asc())
    )
    if department_ids is not None:
        stmt = stmt.where(User.department_id.in_(list(department_ids)))
    return list(db.scalars(stmt).all())
