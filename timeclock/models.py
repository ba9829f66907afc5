from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Literal

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from timeclock.db import Base

JsonType = JSON().with_variant(JSONB(), "postgresql")


class EntryStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ApproverKind(str, enum.Enum):
    HUMAN = "HUMAN"
    SYSTEM = "SYSTEM"


class RoundingUnit(str, enum.Enum):
    NONE = "none"
    ONE_MINUTE = "1min"
    FIVE_MINUTES = "5min"
    SIX_MINUTES = "6min"
    SEVEN_MINUTES = "7min"
    FIFTEEN_MINUTES = "15min"


class RoundingDirection(str, enum.Enum):
    NEAREST = "nearest"
    UP = "up"
    DOWN = "down"


class DurationAction(str, enum.Enum):
    FLAG = "flag"
    REJECT = "reject"


class AuditActorType(str, enum.Enum):
    USER = "USER"
    SYSTEM = "SYSTEM"


_duration_action_enum = Enum(
    DurationAction,
    name="timeclock_duration_action",
    values_callable=lambda items: [item.value for item in items],
)


@dataclass(frozen=True)
class Approver:
    """Who approved an entry: a person, or the rules pipeline itself."""

    kind: Literal["human", "system"]
    user_id: int | None = None

    @classmethod
    def human(cls, user_id: int) -> Approver:
        return cls(kind="human", user_id=user_id)

    @classmethod
    def system(cls) -> Approver:
        return cls(kind="system")

    @property
    def is_system(self) -> bool:
        return self.kind == "system"


class Department(Base):
    __tablename__ = "departments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))

    users: Mapped[list[User]] = relationship(back_populates="department")


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)
    department_id: Mapped[int | None] = mapped_column(
        ForeignKey("departments.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))

    department: Mapped[Department | None] = relationship(back_populates="users")
    entries: Mapped[list[TimeclockEntry]] = relationship(
        back_populates="user",
        foreign_keys="TimeclockEntry.user_id",
    )
    capabilities: Mapped[list[UserCapability]] = relationship(
        back_populates="user",
        cascade="all, delete-orphan",
    )


class UserCapability(Base):
    __tablename__ = "user_capabilities"
    __table_args__ = (
        UniqueConstraint("user_id", "resource", "action", name="uq_user_capabilities_user_resource_action"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    resource: Mapped[str] = mapped_column(String(50), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)

    user: Mapped[User] = relationship(back_populates="capabilities")


class ManagerAssignment(Base):
    __tablename__ = "manager_assignments"
    __table_args__ = (
        UniqueConstraint("manager_id", "department_id", name="uq_manager_assignments_manager_department"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    manager_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    department_id: Mapped[int] = mapped_column(
        ForeignKey("departments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    manager: Mapped[User] = relationship(foreign_keys=[manager_id])
    department: Mapped[Department] = relationship()


class TimeclockEntry(Base):
    __tablename__ = "timeclock_entries"
    __table_args__ = (
        # At most one open session per user; enforced by the store.
        Index(
            "uq_timeclock_entries_open_per_user",
            "user_id",
            unique=True,
            postgresql_where=text("clock_out IS NULL"),
            sqlite_where=text("clock_out IS NULL"),
        ),
        Index("ix_timeclock_entries_user_clock_in", "user_id", "clock_in"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    clock_in: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    clock_out: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    raw_duration: Mapped[int | None] = mapped_column(Integer, nullable=True)
    break_deducted: Mapped[int | None] = mapped_column(Integer, nullable=True)
    duration: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[EntryStatus] = mapped_column(
        Enum(EntryStatus, name="timeclock_entry_status", values_callable=lambda items: [item.value for item in items]),
        nullable=False,
        default=EntryStatus.PENDING,
        server_default=text("'pending'"),
        index=True,
    )
    flag_reason: Mapped[str | None] = mapped_column(String(50), nullable=True)
    auto_approved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    rejected_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    approved_by_kind: Mapped[ApproverKind | None] = mapped_column(
        Enum(ApproverKind, name="timeclock_approver_kind"),
        nullable=True,
    )
    approved_by_user_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    last_edited_by_user_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    last_edited_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    user: Mapped[User] = relationship(back_populates="entries", foreign_keys=[user_id])

    @property
    def approver(self) -> Approver | None:
        if self.approved_by_kind == ApproverKind.SYSTEM:
            return Approver.system()
        if self.approved_by_kind == ApproverKind.HUMAN and self.approved_by_user_id is not None:
            return Approver.human(self.approved_by_user_id)
        return None


class TimeclockRulesConfig(Base):
    __tablename__ = "timeclock_rules_config"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    break_deduction_enabled: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )
    # [{"after_minutes": 360, "deduct_minutes": 30}, ...]
    break_rules: Mapped[list[dict[str, Any]]] = mapped_column(JsonType, nullable=False, default=list)
    rounding_unit: Mapped[RoundingUnit] = mapped_column(
        Enum(RoundingUnit, name="timeclock_rounding_unit", values_callable=lambda items: [item.value for item in items]),
        nullable=False,
        default=RoundingUnit.NONE,
        server_default=text("'none'"),
    )
    rounding_direction: Mapped[RoundingDirection] = mapped_column(
        Enum(
            RoundingDirection,
            name="timeclock_rounding_direction",
            values_callable=lambda items: [item.value for item in items],
        ),
        nullable=False,
        default=RoundingDirection.NEAREST,
        server_default=text("'nearest'"),
    )
    min_duration_enabled: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )
    min_duration_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=60, server_default=text("60"))
    min_duration_action: Mapped[DurationAction] = mapped_column(
        _duration_action_enum,
        nullable=False,
        default=DurationAction.REJECT,
        server_default=text("'reject'"),
    )
    max_duration_enabled: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )
    max_duration_hours: Mapped[float] = mapped_column(Float, nullable=False, default=16.0, server_default=text("16"))
    max_duration_action: Mapped[DurationAction] = mapped_column(
        _duration_action_enum,
        nullable=False,
        default=DurationAction.FLAG,
        server_default=text("'flag'"),
    )
    auto_approve_enabled: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )
    auto_approve_min_hours: Mapped[float] = mapped_column(Float, nullable=False, default=0.0, server_default=text("0"))
    auto_approve_max_hours: Mapped[float] = mapped_column(
        Float, nullable=False, default=12.0, server_default=text("12")
    )
    auto_approve_block_on_overtime: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=text("true")
    )
    missed_punch_enabled: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=text("true")
    )
    missed_punch_threshold_hours: Mapped[float] = mapped_column(
        Float, nullable=False, default=12.0, server_default=text("12")
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )


class OvertimeConfig(Base):
    __tablename__ = "overtime_config"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    daily_threshold_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    weekly_threshold_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    alert_before_daily_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    alert_before_weekly_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    notify_employee: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    notify_manager: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )


class PayPeriodLock(Base):
    __tablename__ = "pay_period_locks"
    __table_args__ = (
        UniqueConstraint("period_start", "period_end", name="uq_pay_period_locks_period"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    period_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    period_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    locked_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    locked_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ts_utc: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        index=True,
    )
    actor_type: Mapped[AuditActorType] = mapped_column(
        Enum(AuditActorType, name="audit_actor_type"),
        nullable=False,
    )
    actor_id: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    entity_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    ip: Mapped[str | None] = mapped_column(String(128), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    request_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    details: Mapped[dict[str, Any]] = mapped_column(JsonType, nullable=False, default=dict)
