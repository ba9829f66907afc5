from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from timeclock.models import (
    ApproverKind,
    DurationAction,
    EntryStatus,
    RoundingDirection,
    RoundingUnit,
)


class TimeclockEntryRead(BaseModel):
    id: int
    user_id: int
    clock_in: datetime
    clock_out: datetime | None
    raw_duration: int | None
    break_deducted: int | None
    duration: int | None
    status: EntryStatus
    flag_reason: str | None
    auto_approved: bool
    rejected_note: str | None
    approved_by_kind: ApproverKind | None
    approved_by_user_id: int | None
    approved_at: datetime | None
    is_locked: bool
    last_edited_by_user_id: int | None = None
    last_edited_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class ClockActionResponse(BaseModel):
    ok: bool = True
    entry: TimeclockEntryRead


class EmployeeEntriesResponse(BaseModel):
    active_entry: TimeclockEntryRead | None = None
    entries: list[TimeclockEntryRead]


class ThresholdStatusRead(BaseModel):
    current_minutes: int
    threshold_minutes: int | None
    approaching: bool
    exceeded: bool


class AlertStatusRead(BaseModel):
    daily: ThresholdStatusRead
    weekly: ThresholdStatusRead


class RejectEntryRequest(BaseModel):
    note: str = Field(default="", max_length=2000)


class EditEntryRequest(BaseModel):
    clock_in: datetime | None = None
    clock_out: datetime | None = None


class BulkApproveRequest(BaseModel):
    entry_ids: list[int] = Field(min_length=1, max_length=500)


class BulkItemRead(BaseModel):
    id: int
    status: Literal["approved", "skipped", "failed"]
    reason: str | None = None


class BulkApproveResponse(BaseModel):
    message: str
    approved: int
    skipped: int
    failed: int
    details: list[BulkItemRead]


class DepartmentRead(BaseModel):
    id: int
    name: str

    model_config = ConfigDict(from_attributes=True)


class EntryDetailRead(TimeclockEntryRead):
    user_full_name: str | None = None
    department_id: int | None = None
    department_name: str | None = None


class TeamEntryRead(EntryDetailRead):
    exceeds_daily_threshold: bool = False


class EmployeeTotalsRead(BaseModel):
    user_id: int
    full_name: str
    department_id: int | None
    department_name: str | None
    total_minutes: int
    regular_minutes: int
    daily_overtime_minutes: int
    weekly_overtime_minutes: int
    entry_count: int
    status_counts: dict[str, int]
    has_overtime: bool


class TeamTotalsResponse(BaseModel):
    entries: list[TeamEntryRead]
    employee_totals: list[EmployeeTotalsRead]
    accessible_departments: list[DepartmentRead]


class MissedPunchRead(BaseModel):
    entry_id: int
    user_id: int
    user_full_name: str | None = None
    department_id: int | None = None
    department_name: str | None = None
    clock_in: datetime
    hours_open: float


class BreakRuleSchema(BaseModel):
    after_minutes: int = Field(ge=0, le=24 * 60)
    deduct_minutes: int = Field(ge=0, le=24 * 60)


class RulesConfigRead(BaseModel):
    break_deduction_enabled: bool
    break_rules: list[BreakRuleSchema]
    rounding_unit: RoundingUnit
    rounding_direction: RoundingDirection
    min_duration_enabled: bool
    min_duration_seconds: int
    min_duration_action: DurationAction
    max_duration_enabled: bool
    max_duration_hours: float
    max_duration_action: DurationAction
    auto_approve_enabled: bool
    auto_approve_min_hours: float
    auto_approve_max_hours: float
    auto_approve_block_on_overtime: bool
    missed_punch_enabled: bool
    missed_punch_threshold_hours: float


class RulesConfigUpdateRequest(BaseModel):
    break_deduction_enabled: bool | None = None
    break_rules: list[BreakRuleSchema] | None = Field(default=None, max_length=10)
    rounding_unit: RoundingUnit | None = None
    rounding_direction: RoundingDirection | None = None
    min_duration_enabled: bool | None = None
    min_duration_seconds: int | None = Field(default=None, ge=0, le=3600)
    min_duration_action: DurationAction | None = None
    max_duration_enabled: bool | None = None
    max_duration_hours: float | None = Field(default=None, gt=0, le=48)
    max_duration_action: DurationAction | None = None
    auto_approve_enabled: bool | None = None
    auto_approve_min_hours: float | None = Field(default=None, ge=0, le=24)
    auto_approve_max_hours: float | None = Field(default=None, ge=0, le=24)
    auto_approve_block_on_overtime: bool | None = None
    missed_punch_enabled: bool | None = None
    missed_punch_threshold_hours: float | None = Field(default=None, gt=0, le=72)


class OvertimeConfigRead(BaseModel):
    daily_threshold_minutes: int | None
    weekly_threshold_minutes: int | None
    alert_before_daily_minutes: int | None
    alert_before_weekly_minutes: int | None
    notify_employee: bool
    notify_manager: bool


class AlertsResponse(BaseModel):
    alerts: AlertStatusRead | None = None
    config: OvertimeConfigRead | None = None


class OvertimeConfigUpdateRequest(BaseModel):
    daily_threshold_minutes: int | None = Field(default=None, ge=1, le=24 * 60)
    weekly_threshold_minutes: int | None = Field(default=None, ge=1, le=7 * 24 * 60)
    alert_before_daily_minutes: int | None = Field(default=None, ge=0, le=24 * 60)
    alert_before_weekly_minutes: int | None = Field(default=None, ge=0, le=7 * 24 * 60)
    notify_employee: bool | None = None
    notify_manager: bool | None = None

    @model_validator(mode="after")
    def validate_flags(self) -> OvertimeConfigUpdateRequest:
        # Thresholds and margins accept null; the notification flags do not.
        for name in ("notify_employee", "notify_manager"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self


class ManagerAssignmentCreate(BaseModel):
    manager_id: int = Field(ge=1)
    department_id: int = Field(ge=1)


class ManagerAssignmentRead(BaseModel):
    id: int
    manager_id: int
    manager_name: str | None = None
    department_id: int
    department_name: str | None = None
    created_at: datetime


class PayPeriodRequest(BaseModel):
    period_start: datetime
    period_end: datetime

    @model_validator(mode="after")
    def validate_range(self) -> PayPeriodRequest:
        if self.period_end < self.period_start:
            raise ValueError("period_end must be greater than or equal to period_start")
        return self


class PayPeriodLockRead(BaseModel):
    id: int
    period_start: datetime
    period_end: datetime
    locked_by: int | None
    locked_at: datetime
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class PayPeriodLockStatusResponse(BaseModel):
    is_locked: bool
    lock: PayPeriodLockRead | None = None


class SoftDeleteResponse(BaseModel):
    ok: bool = True
    id: int
