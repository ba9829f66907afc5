from __future__ import annotations

from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from timeclock.errors import AuthorizationError
from timeclock.models import Department, EntryStatus, TimeclockEntry, User
from timeclock.services.directory import DepartmentScope
from timeclock.services.overtime import UTC, calculate_overtime, entry_minutes, is_completed
from timeclock.services.rules_config import OvertimeSnapshot
from timeclock.services.time_windows import local_date, normalize_ts


@dataclass(frozen=True, slots=True)
class TeamFilters:
    department_id: int | None = None
    user_id: int | None = None
    status: EntryStatus | None = None
    period_start: datetime | None = None
    period_end: datetime | None = None


@dataclass(frozen=True, slots=True)
class TeamEntryRow:
    entry: TimeclockEntry
    exceeds_daily_threshold: bool


@dataclass(slots=True)
class EmployeeTotals:
    user_id: int
    full_name: str
    department_id: int | None
    department_name: str | None
    total_minutes: int = 0
    regular_minutes: int = 0
    daily_overtime_minutes: int = 0
    weekly_overtime_minutes: int = 0
    entry_count: int = 0
    status_counts: dict[str, int] = field(default_factory=dict)

    @property
    def has_overtime(self) -> bool:
        return self.daily_overtime_minutes + self.weekly_overtime_minutes > 0


@dataclass(slots=True)
class TeamTotals:
    entries: list[TeamEntryRow]
    employee_totals: list[EmployeeTotals]
    accessible_departments: list[Department]


def _effective_department_ids(scope: DepartmentScope, department_id: int | None) -> set[int] | None:
    """Department ids to filter on; ``None`` means no department restriction."""
    if scope.unrestricted:
        return {department_id} if department_id is not None else None
    if not scope.department_ids:
        raise AuthorizationError("NO_DEPARTMENT_ASSIGNMENTS", "You have no department assignments.")
    if department_id is not None:
        if department_id not in scope.department_ids:
            raise AuthorizationError(
                "NOT_AUTHORIZED_FOR_DEPARTMENT",
                "You are not authorized to view this department.",
            )
        return {department_id}
    return set(scope.department_ids)


def list_accessible_departments(db: Session, scope: DepartmentScope) -> list[Department]:
    stmt = select(Department).where(Department.is_active.is_(True)).order_by(Department.name.asc())
    if not scope.unrestricted:
        if not scope.department_ids:
            return []
        stmt = stmt.where(Department.id.in_(scope.department_ids))
    return list(db.scalars(stmt).all())


def get_team_totals(
    db: Session,
    *,
    scope: DepartmentScope,
    filters: TeamFilters,
    overtime: OvertimeSnapshot | None,
    tz: ZoneInfo = UTC,
) -> TeamTotals:
    department_ids = _effective_department_ids(scope, filters.department_id)

    stmt = (
        select(TimeclockEntry)
        .join(User, User.id == TimeclockEntry.user_id)
        .options(selectinload(TimeclockEntry.user).selectinload(User.department))
        .order_by(TimeclockEntry.clock_in.desc(), TimeclockEntry.id.desc())
    )
    if department_ids is not None:
        stmt = stmt.where(User.department_id.in_(department_ids))
    if filters.user_id is not None:
        stmt = stmt.where(TimeclockEntry.user_id == filters.user_id)
    if filters.status is not None:
        stmt = stmt.where(TimeclockEntry.status == filters.status)
    if filters.period_start is not None:
        stmt = stmt.where(TimeclockEntry.clock_in >= normalize_ts(filters.period_start))
    if filters.period_end is not None:
        stmt = stmt.where(TimeclockEntry.clock_in <= normalize_ts(filters.period_end))

    entries = list(db.scalars(stmt).all())
    calculation = calculate_overtime(entries, overtime, tz=tz)
    daily_threshold = overtime.daily_threshold_minutes if overtime is not None else None

    day_totals: dict[tuple[int, object], int] = defaultdict(int)
    for entry in entries:
        if is_completed(entry):
            day_totals[(entry.user_id, local_date(entry.clock_in, tz))] += entry_minutes(entry)

    rows: list[TeamEntryRow] = []
    totals_by_user: dict[int, EmployeeTotals] = {}
    status_counts: dict[int, Counter[str]] = defaultdict(Counter)
    for entry in entries:
        exceeds = False
        if daily_threshold is not None and is_completed(entry):
            exceeds = day_totals[(entry.user_id, local_date(entry.clock_in, tz))] > daily_threshold
        rows.append(TeamEntryRow(entry=entry, exceeds_daily_threshold=exceeds))

        if entry.user_id not in totals_by_user:
            user = entry.user
            totals_by_user[entry.user_id] = EmployeeTotals(
                user_id=entry.user_id,
                full_name=user.full_name,
                department_id=user.department_id,
                department_name=user.department.name if user.department is not None else None,
            )
        totals_by_user[entry.user_id].entry_count += 1
        status_counts[entry.user_id][EntryStatus(entry.status).value] += 1

    for user_id, totals in totals_by_user.items():
        totals.status_counts = dict(status_counts[user_id])
        employee = calculation.employees.get(user_id)
        if employee is None:
            continue
        totals.total_minutes = employee.total_minutes
        totals.regular_minutes = employee.regular_minutes
        totals.daily_overtime_minutes = employee.daily_overtime_minutes
        totals.weekly_overtime_minutes = employee.weekly_overtime_minutes

    return TeamTotals(
        entries=rows,
        employee_totals=sorted(totals_by_user.values(), key=lambda item: (item.full_name, item.user_id)),
        accessible_departments=list_accessible_departments(db, scope),
    )
