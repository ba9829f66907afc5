from __future__ import annotations

from datetime import datetime
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from timeclock.audit import log_audit
from timeclock.db import get_db
from timeclock.dependencies import client_ip, get_rules_store, get_timezone, request_id_of, user_agent
from timeclock.errors import ValidationFailedError
from timeclock.models import AuditActorType
from timeclock.schemas import (
    AlertsResponse,
    AlertStatusRead,
    ClockActionResponse,
    EmployeeEntriesResponse,
    OvertimeConfigRead,
    TimeclockEntryRead,
)
from timeclock.security import CAP_CLOCK_IN_OUT, CurrentUser, require_capability, require_user
from timeclock.services.alerts import get_alert_status
from timeclock.services.clock_sessions import clock_in, clock_out, get_active_entry, list_user_entries
from timeclock.services.rules_config import RulesConfigStore, get_overtime_config
from timeclock.services.time_windows import normalize_ts

router = APIRouter(tags=["timeclock"])


@router.post("/api/timeclock/clock-in", response_model=ClockActionResponse)
def post_clock_in(
    request: Request,
    user: CurrentUser = Depends(require_capability(CAP_CLOCK_IN_OUT)),
    db: Session = Depends(get_db),
) -> ClockActionResponse:
    entry = clock_in(db, user_id=user.id)
    request.state.entry_id = entry.id
    log_audit(
        db,
        actor_type=AuditActorType.USER,
        actor_id=str(user.id),
        action="TIMECLOCK_CLOCK_IN",
        entity_type="timeclock_entry",
        entity_id=str(entry.id),
        ip=client_ip(request),
        user_agent=user_agent(request),
        details={"clock_in": entry.clock_in.isoformat()},
        request_id=request_id_of(request),
    )
    return ClockActionResponse(entry=TimeclockEntryRead.model_validate(entry))


@router.post("/api/timeclock/clock-out", response_model=ClockActionResponse)
def post_clock_out(
    request: Request,
    user: CurrentUser = Depends(require_capability(CAP_CLOCK_IN_OUT)),
    db: Session = Depends(get_db),
    store: RulesConfigStore = Depends(get_rules_store),
) -> ClockActionResponse:
    rules = store.get_snapshot(db)
    overtime = get_overtime_config(db)
    entry = clock_out(
        db,
        user_id=user.id,
        rules=rules,
        overtime=overtime,
        request_id=request_id_of(request),
    )
    request.state.entry_id = entry.id
    log_audit(
        db,
        actor_type=AuditActorType.USER,
        actor_id=str(user.id),
        action="TIMECLOCK_CLOCK_OUT",
        entity_type="timeclock_entry",
        entity_id=str(entry.id),
        ip=client_ip(request),
        user_agent=user_agent(request),
        details={
            "raw_duration": entry.raw_duration,
            "break_deducted": entry.break_deducted,
            "duration": entry.duration,
            "status": entry.status.value,
            "flag_reason": entry.flag_reason,
        },
        request_id=request_id_of(request),
    )
    return ClockActionResponse(entry=TimeclockEntryRead.model_validate(entry))


@router.get("/api/timeclock/alerts", response_model=AlertsResponse)
def get_alerts(
    user: CurrentUser = Depends(require_user),
    db: Session = Depends(get_db),
    tz: ZoneInfo = Depends(get_timezone),
) -> AlertsResponse:
    config = get_overtime_config(db)
    status = get_alert_status(db, user_id=user.id, tz=tz)
    return AlertsResponse(
        alerts=AlertStatusRead.model_validate(status.to_dict()) if status is not None else None,
        config=OvertimeConfigRead.model_validate(config.to_dict()) if config is not None else None,
    )


@router.get("/api/timeclock/entries", response_model=EmployeeEntriesResponse)
def get_my_entries(
    period_start: datetime | None = Query(default=None),
    period_end: datetime | None = Query(default=None),
    user: CurrentUser = Depends(require_user),
    db: Session = Depends(get_db),
) -> EmployeeEntriesResponse:
    if period_start is not None and period_end is not None and normalize_ts(period_end) < normalize_ts(period_start):
        raise ValidationFailedError("INVALID_PERIOD", "period_end must be greater than or equal to period_start.")

    entries = list_user_entries(db, user_id=user.id, period_start=period_start, period_end=period_end)
    active = get_active_entry(db, user_id=user.id)
    return EmployeeEntriesResponse(
        active_entry=TimeclockEntryRead.model_validate(active) if active is not None else None,
        entries=[TimeclockEntryRead.model_validate(item) for item in entries],
    )
