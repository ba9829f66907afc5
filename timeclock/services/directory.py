from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from timeclock.errors import ConflictError, NotFoundError
from timeclock.models import Department, ManagerAssignment, User
from timeclock.security import (
    CAP_VIEW_ALL_ENTRIES,
    TIMECLOCK_RESOURCE,
    CapabilityChecker,
    CurrentUser,
)


class DepartmentDirectory(Protocol):
    def manager_departments(self, user_id: int) -> list[int]: ...

    def is_department_active(self, department_id: int) -> bool: ...


class SqlDepartmentDirectory:
    def __init__(self, db: Session) -> None:
        self._db = db

    def manager_departments(self, user_id: int) -> list[int]:
        return list(
            self._db.scalars(
                select(ManagerAssignment.department_id)
                .where(ManagerAssignment.manager_id == user_id)
                .order_by(ManagerAssignment.department_id.asc())
            ).all()
        )

    def is_department_active(self, department_id: int) -> bool:
        department = self._db.get(Department, department_id)
        return department is not None and bool(department.is_active)


@dataclass(frozen=True, slots=True)
class DepartmentScope:
    """Departments a manager may see or approve. ``unrestricted`` covers all."""

    unrestricted: bool
    department_ids: frozenset[int] = frozenset()

    def covers(self, department_id: int | None) -> bool:
        if self.unrestricted:
            return True
        return department_id is not None and department_id in self.department_ids


def resolve_department_scope(
    user: CurrentUser,
    *,
    checker: CapabilityChecker,
    directory: DepartmentDirectory,
) -> DepartmentScope:
    if checker.has_capability(user, TIMECLOCK_RESOURCE, CAP_VIEW_ALL_ENTRIES):
        return DepartmentScope(unrestricted=True)
    return DepartmentScope(unrestricted=False, department_ids=frozenset(directory.manager_departments(user.id)))


def list_manager_assignments(db: Session, *, manager_id: int | None = None) -> list[ManagerAssignment]:
    stmt = (
        select(ManagerAssignment)
        .options(selectinload(ManagerAssignment.manager), selectinload(ManagerAssignment.department))
        .order_by(ManagerAssignment.manager_id.asc(), ManagerAssignment.department_id.asc())
    )
    if manager_id is not None:
        stmt = stmt.where(ManagerAssignment.manager_id == manager_id)
    return list(db.scalars(stmt).all())


def assign_manager(
    db: Session,
    *,
    manager_id: int,
    department_id: int,
    directory: DepartmentDirectory | None = None,
) -> ManagerAssignment:
    if db.get(User, manager_id) is None:
        raise NotFoundError("USER_NOT_FOUND", "Manager not found.")
    if db.get(Department, department_id) is None:
        raise NotFoundError("DEPARTMENT_NOT_FOUND", "Department not found.")
    directory = directory or SqlDepartmentDirectory(db)
    if not directory.is_department_active(department_id):
        raise ConflictError("DEPARTMENT_INACTIVE", "Cannot assign a manager to an inactive department.")

    assignment = ManagerAssignment(manager_id=manager_id, department_id=department_id)
    db.add(assignment)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError(
            "ASSIGNMENT_EXISTS",
            "Manager is already assigned to this department.",
        ) from exc
    db.refresh(assignment)
    return assignment


def unassign_manager(db: Session, *, manager_id: int, department_id: int) -> ManagerAssignment:
    assignment = db.scalar(
        select(ManagerAssignment).where(
            ManagerAssignment.manager_id == manager_id,
            ManagerAssignment.department_id == department_id,
        )
    )
    if assignment is None:
        raise NotFoundError("ASSIGNMENT_NOT_FOUND", "Manager assignment not found.")
    db.delete(assignment)
    db.commit()
    return assignment
