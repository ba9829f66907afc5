from __future__ import annotations

from zoneinfo import ZoneInfo

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from timeclock.db import get_db
from timeclock.security import CapabilityChecker, CurrentUser, get_capability_checker, require_user
from timeclock.services.directory import (
    DepartmentDirectory,
    DepartmentScope,
    SqlDepartmentDirectory,
    resolve_department_scope,
)
from timeclock.services.rules_config import RulesConfigStore
from timeclock.settings import get_tenant_timezone


def get_rules_store(request: Request) -> RulesConfigStore:
    store = getattr(request.app.state, "rules_store", None)
    if store is None:
        raise RuntimeError("Rules config store is not configured on the application.")
    return store


def get_department_directory(db: Session = Depends(get_db)) -> DepartmentDirectory:
    return SqlDepartmentDirectory(db)


def get_department_scope(
    user: CurrentUser = Depends(require_user),
    checker: CapabilityChecker = Depends(get_capability_checker),
    directory: DepartmentDirectory = Depends(get_department_directory),
) -> DepartmentScope:
    return resolve_department_scope(user, checker=checker, directory=directory)


def request_id_of(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


def client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    if request.client:
        return request.client.host
    return None


def user_agent(request: Request) -> str | None:
    return request.headers.get("user-agent")


def get_timezone() -> ZoneInfo:
    return get_tenant_timezone()
