from __future__ import annotations

from datetime import datetime
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from timeclock.db import get_db
from timeclock.dependencies import (
    client_ip,
    get_department_directory,
    get_department_scope,
    get_rules_store,
    get_timezone,
    request_id_of,
    user_agent,
)
from timeclock.errors import AuthorizationError, ValidationFailedError
from timeclock.models import EntryStatus, TimeclockEntry
from timeclock.schemas import (
    BulkApproveRequest,
    BulkApproveResponse,
    BulkItemRead,
    DepartmentRead,
    EditEntryRequest,
    EmployeeTotalsRead,
    EntryDetailRead,
    MissedPunchRead,
    RejectEntryRequest,
    TeamEntryRead,
    TeamTotalsResponse,
    TimeclockEntryRead,
)
from timeclock.security import (
    CAP_APPROVE_ENTRIES,
    CAP_EDIT_TEAM_ENTRIES,
    CAP_VIEW_ALL_ENTRIES,
    CAP_VIEW_TEAM_ENTRIES,
    TIMECLOCK_RESOURCE,
    CapabilityChecker,
    CurrentUser,
    get_capability_checker,
    require_capability,
    require_user,
)
from timeclock.services.approvals import approve_entry, bulk_approve, reject_entry
from timeclock.services.directory import DepartmentDirectory, DepartmentScope, resolve_department_scope
from timeclock.services.entries import edit_entry, get_entry
from timeclock.services.missed_punches import get_missed_punch_entries
from timeclock.services.rules_config import RulesConfigStore, get_overtime_config
from timeclock.services.team import TeamFilters, get_team_totals
from timeclock.services.time_windows import normalize_ts

router = APIRouter(tags=["timeclock-manager"])


def _to_entry_detail_read(entry: TimeclockEntry) -> EntryDetailRead:
    base = TimeclockEntryRead.model_validate(entry).model_dump()
    user = entry.user
    department = user.department if user is not None else None
    return EntryDetailRead(
        **base,
        user_full_name=user.full_name if user is not None else None,
        department_id=user.department_id if user is not None else None,
        department_name=department.name if department is not None else None,
    )


def _to_team_entry_read(entry: TimeclockEntry, *, exceeds_daily_threshold: bool) -> TeamEntryRead:
    return TeamEntryRead(
        **_to_entry_detail_read(entry).model_dump(),
        exceeds_daily_threshold=exceeds_daily_threshold,
    )


@router.get("/api/timeclock/team", response_model=TeamTotalsResponse)
def get_team(
    department_id: int | None = Query(default=None, ge=1),
    user_id: int | None = Query(default=None, ge=1),
    status: EntryStatus | None = Query(default=None),
    period_start: datetime | None = Query(default=None),
    period_end: datetime | None = Query(default=None),
    _user: CurrentUser = Depends(require_capability(CAP_VIEW_TEAM_ENTRIES, CAP_VIEW_ALL_ENTRIES)),
    scope: DepartmentScope = Depends(get_department_scope),
    db: Session = Depends(get_db),
    tz: ZoneInfo = Depends(get_timezone),
) -> TeamTotalsResponse:
    if period_start is not None and period_end is not None and normalize_ts(period_end) < normalize_ts(period_start):
        raise ValidationFailedError("INVALID_PERIOD", "period_end must be greater than or equal to period_start.")

    totals = get_team_totals(
        db,
        scope=scope,
        filters=TeamFilters(
            department_id=department_id,
            user_id=user_id,
            status=status,
            period_start=period_start,
            period_end=period_end,
        ),
        overtime=get_overtime_config(db),
        tz=tz,
    )
    return TeamTotalsResponse(
        entries=[
            _to_team_entry_read(row.entry, exceeds_daily_threshold=row.exceeds_daily_threshold)
            for row in totals.entries
        ],
        employee_totals=[
            EmployeeTotalsRead(
                user_id=item.user_id,
                full_name=item.full_name,
                department_id=item.department_id,
                department_name=item.department_name,
                total_minutes=item.total_minutes,
                regular_minutes=item.regular_minutes,
                daily_overtime_minutes=item.daily_overtime_minutes,
                weekly_overtime_minutes=item.weekly_overtime_minutes,
                entry_count=item.entry_count,
                status_counts=item.status_counts,
                has_overtime=item.has_overtime,
            )
            for item in totals.employee_totals
        ],
        accessible_departments=[DepartmentRead.model_validate(item) for item in totals.accessible_departments],
    )


@router.get("/api/timeclock/entries/{entry_id}", response_model=EntryDetailRead)
def get_entry_detail(
    entry_id: int,
    user: CurrentUser = Depends(require_user),
    checker: CapabilityChecker = Depends(get_capability_checker),
    directory: DepartmentDirectory = Depends(get_department_directory),
    db: Session = Depends(get_db),
) -> EntryDetailRead:
    scope: DepartmentScope | None = None
    if any(
        checker.has_capability(user, TIMECLOCK_RESOURCE, action)
        for action in (CAP_VIEW_TEAM_ENTRIES, CAP_VIEW_ALL_ENTRIES)
    ):
        scope = resolve_department_scope(user, checker=checker, directory=directory)
    entry = get_entry(db, entry_id=entry_id, viewer=user, scope=scope)
    return _to_entry_detail_read(entry)


@router.put("/api/timeclock/entries/{entry_id}", response_model=EntryDetailRead)
def put_entry(
    entry_id: int,
    payload: EditEntryRequest,
    request: Request,
    user: CurrentUser = Depends(require_capability(CAP_EDIT_TEAM_ENTRIES)),
    scope: DepartmentScope = Depends(get_department_scope),
    db: Session = Depends(get_db),
    store: RulesConfigStore = Depends(get_rules_store),
) -> EntryDetailRead:
    request.state.entry_id = entry_id
    entry = edit_entry(
        db,
        entry_id=entry_id,
        editor=user,
        scope=scope,
        rules=store.get_snapshot(db),
        clock_in=payload.clock_in,
        clock_out=payload.clock_out,
        request_id=request_id_of(request),
        ip=client_ip(request),
        user_agent=user_agent(request),
    )
    return _to_entry_detail_read(entry)


@router.post("/api/timeclock/entries/{entry_id}/approve", response_model=TimeclockEntryRead)
def post_approve_entry(
    entry_id: int,
    request: Request,
    user: CurrentUser = Depends(require_capability(CAP_APPROVE_ENTRIES)),
    scope: DepartmentScope = Depends(get_department_scope),
    db: Session = Depends(get_db),
) -> TimeclockEntryRead:
    request.state.entry_id = entry_id
    entry = approve_entry(
        db,
        entry_id=entry_id,
        approver=user,
        scope=scope,
        request_id=request_id_of(request),
    )
    return TimeclockEntryRead.model_validate(entry)


@router.post("/api/timeclock/entries/{entry_id}/reject", response_model=TimeclockEntryRead)
def post_reject_entry(
    entry_id: int,
    payload: RejectEntryRequest,
    request: Request,
    user: CurrentUser = Depends(require_capability(CAP_APPROVE_ENTRIES)),
    scope: DepartmentScope = Depends(get_department_scope),
    db: Session = Depends(get_db),
) -> TimeclockEntryRead:
    request.state.entry_id = entry_id
    entry = reject_entry(
        db,
        entry_id=entry_id,
        approver=user,
        scope=scope,
        note=payload.note,
        request_id=request_id_of(request),
    )
    return TimeclockEntryRead.model_validate(entry)


@router.post("/api/timeclock/bulk-approve", response_model=BulkApproveResponse)
def post_bulk_approve(
    payload: BulkApproveRequest,
    request: Request,
    user: CurrentUser = Depends(require_capability(CAP_APPROVE_ENTRIES)),
    scope: DepartmentScope = Depends(get_department_scope),
    db: Session = Depends(get_db),
) -> BulkApproveResponse:
    result = bulk_approve(
        db,
        entry_ids=payload.entry_ids,
        approver=user,
        scope=scope,
        request_id=request_id_of(request),
    )
    return BulkApproveResponse(
        message=result.message,
        approved=result.approved,
        skipped=result.skipped,
        failed=result.failed,
        details=[BulkItemRead(id=item.id, status=item.status, reason=item.reason) for item in result.details],
    )


@router.get("/api/timeclock/missed-punches", response_model=list[MissedPunchRead])
def get_missed_punches(
    _user: CurrentUser = Depends(
        require_capability(CAP_VIEW_TEAM_ENTRIES, CAP_VIEW_ALL_ENTRIES, CAP_APPROVE_ENTRIES)
    ),
    scope: DepartmentScope = Depends(get_department_scope),
    db: Session = Depends(get_db),
    store: RulesConfigStore = Depends(get_rules_store),
) -> list[MissedPunchRead]:
    if not scope.unrestricted and not scope.department_ids:
        raise AuthorizationError("NO_DEPARTMENT_ASSIGNMENTS", "You have no department assignments.")

    now_utc = normalize_ts(None)
    entries = get_missed_punch_entries(
        db,
        store.get_snapshot(db),
        department_ids=None if scope.unrestricted else scope.department_ids,
        now=now_utc,
    )
    items: list[MissedPunchRead] = []
    for entry in entries:
        user = entry.user
        department = user.department if user is not None else None
        hours_open = (now_utc - normalize_ts(entry.clock_in)).total_seconds() / 3600
        items.append(
            MissedPunchRead(
                entry_id=entry.id,
                user_id=entry.user_id,
                user_full_name=user.full_name if user is not None else None,
                department_id=user.department_id if user is not None else None,
                department_name=department.name if department is not None else None,
                clock_in=entry.clock_in,
                hours_open=round(hours_open, 2),
            )
        )
    return items
