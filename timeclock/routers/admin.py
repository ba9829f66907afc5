from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from timeclock.audit import log_audit
from timeclock.db import get_db
from timeclock.dependencies import client_ip, get_department_directory, get_rules_store, request_id_of, user_agent
from timeclock.models import AuditActorType, ManagerAssignment
from timeclock.schemas import (
    ManagerAssignmentCreate,
    ManagerAssignmentRead,
    OvertimeConfigRead,
    OvertimeConfigUpdateRequest,
    PayPeriodLockRead,
    PayPeriodLockStatusResponse,
    PayPeriodRequest,
    RulesConfigRead,
    RulesConfigUpdateRequest,
    SoftDeleteResponse,
)
from timeclock.security import CAP_MANAGE_CONFIG, CurrentUser, require_capability
from timeclock.services.directory import (
    DepartmentDirectory,
    assign_manager,
    list_manager_assignments,
    unassign_manager,
)
from timeclock.services.pay_period_locks import get_pay_period_lock_status, lock_pay_period, unlock_pay_period
from timeclock.services.rules_config import (
    RulesConfigStore,
    get_overtime_config,
    update_overtime_config,
    update_rules_config,
)

router = APIRouter(tags=["timeclock-admin"])
require_config_admin = require_capability(CAP_MANAGE_CONFIG)


def _to_assignment_read(assignment: ManagerAssignment) -> ManagerAssignmentRead:
    return ManagerAssignmentRead(
        id=assignment.id,
        manager_id=assignment.manager_id,
        manager_name=assignment.manager.full_name if assignment.manager is not None else None,
        department_id=assignment.department_id,
        department_name=assignment.department.name if assignment.department is not None else None,
        created_at=assignment.created_at,
    )


def _audit(
    db: Session,
    request: Request,
    user: CurrentUser,
    *,
    action: str,
    entity_type: str,
    entity_id: str | None,
    before: dict | None = None,
    after: dict | None = None,
    details: dict | None = None,
) -> None:
    log_audit(
        db,
        actor_type=AuditActorType.USER,
        actor_id=str(user.id),
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        ip=client_ip(request),
        user_agent=user_agent(request),
        before=before,
        after=after,
        details=details,
        request_id=request_id_of(request),
    )


@router.get("/api/timeclock/rules-config", response_model=RulesConfigRead)
def get_rules_config(
    _user: CurrentUser = Depends(require_config_admin),
    db: Session = Depends(get_db),
    store: RulesConfigStore = Depends(get_rules_store),
) -> RulesConfigRead:
    return RulesConfigRead.model_validate(store.get_snapshot(db).to_dict())


@router.put("/api/timeclock/rules-config", response_model=RulesConfigRead)
def put_rules_config(
    payload: RulesConfigUpdateRequest,
    request: Request,
    user: CurrentUser = Depends(require_config_admin),
    db: Session = Depends(get_db),
    store: RulesConfigStore = Depends(get_rules_store),
) -> RulesConfigRead:
    changes = payload.model_dump(exclude_unset=True, exclude_none=True, mode="json")
    before, after = update_rules_config(db, store, changes=changes)
    _audit(
        db,
        request,
        user,
        action="TIMECLOCK_RULES_CONFIG_UPDATED",
        entity_type="timeclock_rules_config",
        entity_id=None,
        before=before.to_dict(),
        after=after.to_dict(),
        details={"changed_fields": sorted(changes)},
    )
    return RulesConfigRead.model_validate(after.to_dict())


@router.get("/api/timeclock/overtime-config", response_model=OvertimeConfigRead | None)
def get_overtime_config_endpoint(
    _user: CurrentUser = Depends(require_config_admin),
    db: Session = Depends(get_db),
) -> OvertimeConfigRead | None:
    config = get_overtime_config(db)
    if config is None:
        return None
    return OvertimeConfigRead.model_validate(config.to_dict())


@router.put("/api/timeclock/overtime-config", response_model=OvertimeConfigRead)
def put_overtime_config(
    payload: OvertimeConfigUpdateRequest,
    request: Request,
    user: CurrentUser = Depends(require_config_admin),
    db: Session = Depends(get_db),
) -> OvertimeConfigRead:
    # Explicit nulls are kept: a null threshold disables that dimension.
    changes = payload.model_dump(exclude_unset=True)
    before, after = update_overtime_config(db, changes=changes)
    _audit(
        db,
        request,
        user,
        action="OVERTIME_CONFIG_UPDATED",
        entity_type="overtime_config",
        entity_id=None,
        before=before.to_dict() if before is not None else None,
        after=after.to_dict(),
        details={"changed_fields": sorted(changes)},
    )
    return OvertimeConfigRead.model_validate(after.to_dict())


@router.get("/api/timeclock/manager-assignments", response_model=list[ManagerAssignmentRead])
def get_manager_assignments(
    manager_id: int | None = Query(default=None, ge=1),
    _user: CurrentUser = Depends(require_config_admin),
    db: Session = Depends(get_db),
) -> list[ManagerAssignmentRead]:
    return [_to_assignment_read(item) for item in list_manager_assignments(db, manager_id=manager_id)]


@router.post(
    "/api/timeclock/manager-assignments",
    response_model=ManagerAssignmentRead,
    status_code=status.HTTP_201_CREATED,
)
def post_manager_assignment(
    payload: ManagerAssignmentCreate,
    request: Request,
    user: CurrentUser = Depends(require_config_admin),
    db: Session = Depends(get_db),
    directory: DepartmentDirectory = Depends(get_department_directory),
) -> ManagerAssignmentRead:
    assignment = assign_manager(
        db,
        manager_id=payload.manager_id,
        department_id=payload.department_id,
        directory=directory,
    )
    result = _to_assignment_read(assignment)
    _audit(
        db,
        request,
        user,
        action="MANAGER_ASSIGNMENT_CREATED",
        entity_type="manager_assignment",
        entity_id=str(assignment.id),
        details={"manager_id": payload.manager_id, "department_id": payload.department_id},
    )
    return result


@router.delete("/api/timeclock/manager-assignments", response_model=SoftDeleteResponse)
def delete_manager_assignment(
    request: Request,
    manager_id: int = Query(ge=1),
    department_id: int = Query(ge=1),
    user: CurrentUser = Depends(require_config_admin),
    db: Session = Depends(get_db),
) -> SoftDeleteResponse:
    assignment = unassign_manager(db, manager_id=manager_id, department_id=department_id)
    _audit(
        db,
        request,
        user,
        action="MANAGER_ASSIGNMENT_DELETED",
        entity_type="manager_assignment",
        entity_id=str(assignment.id),
        details={"manager_id": manager_id, "department_id": department_id},
    )
    return SoftDeleteResponse(id=assignment.id)


@router.get("/api/timeclock/pay-period-lock", response_model=PayPeriodLockStatusResponse)
def get_pay_period_lock(
    period_start: datetime = Query(),
    period_end: datetime = Query(),
    _user: CurrentUser = Depends(require_config_admin),
    db: Session = Depends(get_db),
) -> PayPeriodLockStatusResponse:
    lock_status = get_pay_period_lock_status(db, period_start=period_start, period_end=period_end)
    return PayPeriodLockStatusResponse(
        is_locked=lock_status.is_locked,
        lock=PayPeriodLockRead.model_validate(lock_status.lock) if lock_status.lock is not None else None,
    )


@router.post("/api/timeclock/pay-period-lock", response_model=PayPeriodLockRead)
def post_pay_period_lock(
    payload: PayPeriodRequest,
    request: Request,
    user: CurrentUser = Depends(require_config_admin),
    db: Session = Depends(get_db),
) -> PayPeriodLockRead:
    lock = lock_pay_period(
        db,
        period_start=payload.period_start,
        period_end=payload.period_end,
        locked_by=user.id,
    )
    result = PayPeriodLockRead.model_validate(lock)
    _audit(
        db,
        request,
        user,
        action="PAY_PERIOD_LOCKED",
        entity_type="pay_period_lock",
        entity_id=str(lock.id),
        details={"period_start": result.period_start.isoformat(), "period_end": result.period_end.isoformat()},
    )
    return result


@router.delete("/api/timeclock/pay-period-lock", response_model=PayPeriodLockRead)
def delete_pay_period_lock(
    request: Request,
    period_start: datetime = Query(),
    period_end: datetime = Query(),
    user: CurrentUser = Depends(require_config_admin),
    db: Session = Depends(get_db),
) -> PayPeriodLockRead:
    lock = unlock_pay_period(db, period_start=period_start, period_end=period_end)
    result = PayPeriodLockRead.model_validate(lock)
    _audit(
        db,
        request,
        user,
        action="PAY_PERIOD_UNLOCKED",
        entity_type="pay_period_lock",
        entity_id=str(lock.id),
        details={"period_start": result.period_start.isoformat(), "period_end": result.period_end.isoformat()},
    )
    return result
