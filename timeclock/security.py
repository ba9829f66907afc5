from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Protocol
from uuid import uuid4

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.orm import Session

from timeclock.db import get_db
from timeclock.errors import ApiError, AuthorizationError
from timeclock.models import User, UserCapability
from timeclock.settings import get_settings

bearer_scheme = HTTPBearer(auto_error=False)

TIMECLOCK_RESOURCE = "timeclock"
CAP_CLOCK_IN_OUT = "clock_in_out"
CAP_APPROVE_ENTRIES = "approve_entries"
CAP_EDIT_TEAM_ENTRIES = "edit_team_entries"
CAP_VIEW_TEAM_ENTRIES = "view_team_entries"
CAP_VIEW_ALL_ENTRIES = "view_all_entries"
CAP_MANAGE_CONFIG = "manage_config"

TIMECLOCK_ACTIONS: tuple[str, ...] = (
    CAP_CLOCK_IN_OUT,
    CAP_APPROVE_ENTRIES,
    CAP_EDIT_TEAM_ENTRIES,
    CAP_VIEW_TEAM_ENTRIES,
    CAP_VIEW_ALL_ENTRIES,
    CAP_MANAGE_CONFIG,
)


@dataclass(frozen=True)
class CurrentUser:
    id: int
    department_id: int | None
    full_name: str | None = None


class CapabilityChecker(Protocol):
    def has_capability(self, user: CurrentUser, resource: str, action: str) -> bool: ...


class SqlCapabilityChecker:
    def __init__(self, db: Session) -> None:
        self._db = db
        self._cache: dict[int, frozenset[tuple[str, str]]] = {}

    def _load(self, user_id: int) -> frozenset[tuple[str, str]]:
        cached = self._cache.get(user_id)
        if cached is not None:
            return cached
        rows = self._db.execute(
            select(UserCapability.resource, UserCapability.action).where(UserCapability.user_id == user_id)
        ).all()
        loaded = frozenset((str(resource), str(action)) for resource, action in rows)
        self._cache[user_id] = loaded
        return loaded

    def has_capability(self, user: CurrentUser, resource: str, action: str) -> bool:
        return (resource, action) in self._load(user.id)


def create_access_token(*, user_id: int, expires_minutes: int = 30) -> str:
    settings = get_settings()
    now = datetime.now(timezone.utc)
    claims = {
        "sub": str(user_id),
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=expires_minutes)).timestamp()),
        "jti": str(uuid4()),
        "typ": "access",
    }
    return jwt.encode(claims, settings.jwt_secret, algorithm="HS256")


def decode_token(token: str) -> dict[str, Any]:
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=["HS256"],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options={"require_sub": True, "require_iat": True, "require_exp": True},
        )
    except JWTError as exc:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token is invalid.") from exc

    if payload.get("typ") != "access":
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token type is invalid.")
    return payload


def require_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> CurrentUser:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Missing bearer token.")

    payload = decode_token(credentials.credentials)
    try:
        user_id = int(payload["sub"])
    except (KeyError, TypeError, ValueError) as exc:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token subject is invalid.") from exc

    user = db.get(User, user_id)
    if user is None or not user.is_active:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="User is not active.")

    request.state.actor = "user"
    request.state.actor_id = str(user.id)
    return CurrentUser(id=user.id, department_id=user.department_id, full_name=user.full_name)


def get_capability_checker(db: Session = Depends(get_db)) -> CapabilityChecker:
    return SqlCapabilityChecker(db)


def require_capability(*actions: str) -> Callable[..., CurrentUser]:
    """Dependency factory: the caller must hold at least one of ``actions``."""
    for action in actions:
        if action not in TIMECLOCK_ACTIONS:
            raise ValueError(f"Unknown timeclock capability: {action}")

    def _dependency(
        user: CurrentUser = Depends(require_user),
        checker: CapabilityChecker = Depends(get_capability_checker),
    ) -> CurrentUser:
        if not any(checker.has_capability(user, TIMECLOCK_RESOURCE, action) for action in actions):
            raise AuthorizationError("INSUFFICIENT_CAPABILITY", "Insufficient permissions.")
        return user

    return _dependency
