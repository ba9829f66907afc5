"""Initial timeclock schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-18 00:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

timeclock_entry_status = postgresql.ENUM(
    "pending",
    "approved",
    "rejected",
    name="timeclock_entry_status",
    create_type=False,
)
timeclock_approver_kind = postgresql.ENUM(
    "HUMAN",
    "SYSTEM",
    name="timeclock_approver_kind",
    create_type=False,
)
timeclock_rounding_unit = postgresql.ENUM(
    "none",
    "1min",
    "5min",
    "6min",
    "7min",
    "15min",
    name="timeclock_rounding_unit",
    create_type=False,
)
timeclock_rounding_direction = postgresql.ENUM(
    "nearest",
    "up",
    "down",
    name="timeclock_rounding_direction",
    create_type=False,
)
timeclock_duration_action = postgresql.ENUM(
    "flag",
    "reject",
    name="timeclock_duration_action",
    create_type=False,
)
audit_actor_type = postgresql.ENUM(
    "USER",
    "SYSTEM",
    name="audit_actor_type",
    create_type=False,
)

_ENUMS = (
    timeclock_entry_status,
    timeclock_approver_kind,
    timeclock_rounding_unit,
    timeclock_rounding_direction,
    timeclock_duration_action,
    audit_actor_type,
)


def _timestamp_column(name: str) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("CURRENT_TIMESTAMP"),
    )


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in _ENUMS:
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        "departments",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.UniqueConstraint("name", name="uq_departments_name"),
    )

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("department_id", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.ForeignKeyConstraint(["department_id"], ["departments.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )
    op.create_index("ix_users_department_id", "users", ["department_id"])

    op.create_table(
        "user_capabilities",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("resource", sa.String(length=50), nullable=False),
        sa.Column("action", sa.String(length=50), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("user_id", "resource", "action", name="uq_user_capabilities_user_resource_action"),
    )
    op.create_index("ix_user_capabilities_user_id", "user_capabilities", ["user_id"])

    op.create_table(
        "manager_assignments",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("manager_id", sa.Integer(), nullable=False),
        sa.Column("department_id", sa.Integer(), nullable=False),
        _timestamp_column("created_at"),
        sa.ForeignKeyConstraint(["manager_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["department_id"], ["departments.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("manager_id", "department_id", name="uq_manager_assignments_manager_department"),
    )
    op.create_index("ix_manager_assignments_manager_id", "manager_assignments", ["manager_id"])
    op.create_index("ix_manager_assignments_department_id", "manager_assignments", ["department_id"])

    op.create_table(
        "timeclock_entries",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("clock_in", sa.DateTime(timezone=True), nullable=False),
        sa.Column("clock_out", sa.DateTime(timezone=True), nullable=True),
        sa.Column("raw_duration", sa.Integer(), nullable=True),
        sa.Column("break_deducted", sa.Integer(), nullable=True),
        sa.Column("duration", sa.Integer(), nullable=True),
        sa.Column("status", timeclock_entry_status, nullable=False, server_default=sa.text("'pending'")),
        sa.Column("flag_reason", sa.String(length=50), nullable=True),
        sa.Column("auto_approved", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("rejected_note", sa.Text(), nullable=True),
        sa.Column("approved_by_kind", timeclock_approver_kind, nullable=True),
        sa.Column("approved_by_user_id", sa.Integer(), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_locked", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("last_edited_by_user_id", sa.Integer(), nullable=True),
        sa.Column("last_edited_at", sa.DateTime(timezone=True), nullable=True),
        _timestamp_column("created_at"),
        _timestamp_column("updated_at"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["approved_by_user_id"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["last_edited_by_user_id"], ["users.id"], ondelete="SET NULL"),
    )
    op.create_index(
        "uq_timeclock_entries_open_per_user",
        "timeclock_entries",
        ["user_id"],
        unique=True,
        postgresql_where=sa.text("clock_out IS NULL"),
        sqlite_where=sa.text("clock_out IS NULL"),
    )
    op.create_index("ix_timeclock_entries_user_clock_in", "timeclock_entries", ["user_id", "clock_in"])
    op.create_index("ix_timeclock_entries_status", "timeclock_entries", ["status"])

    op.create_table(
        "timeclock_rules_config",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("break_deduction_enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column(
            "break_rules",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column("rounding_unit", timeclock_rounding_unit, nullable=False, server_default=sa.text("'none'")),
        sa.Column(
            "rounding_direction",
            timeclock_rounding_direction,
            nullable=False,
            server_default=sa.text("'nearest'"),
        ),
        sa.Column("min_duration_enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("min_duration_seconds", sa.Integer(), nullable=False, server_default=sa.text("60")),
        sa.Column(
            "min_duration_action",
            timeclock_duration_action,
            nullable=False,
            server_default=sa.text("'reject'"),
        ),
        sa.Column("max_duration_enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("max_duration_hours", sa.Float(), nullable=False, server_default=sa.text("16")),
        sa.Column(
            "max_duration_action",
            timeclock_duration_action,
            nullable=False,
            server_default=sa.text("'flag'"),
        ),
        sa.Column("auto_approve_enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("auto_approve_min_hours", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("auto_approve_max_hours", sa.Float(), nullable=False, server_default=sa.text("12")),
        sa.Column(
            "auto_approve_block_on_overtime",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("true"),
        ),
        sa.Column("missed_punch_enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("missed_punch_threshold_hours", sa.Float(), nullable=False, server_default=sa.text("12")),
        _timestamp_column("updated_at"),
    )

    op.create_table(
        "overtime_config",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("daily_threshold_minutes", sa.Integer(), nullable=True),
        sa.Column("weekly_threshold_minutes", sa.Integer(), nullable=True),
        sa.Column("alert_before_daily_minutes", sa.Integer(), nullable=True),
        sa.Column("alert_before_weekly_minutes", sa.Integer(), nullable=True),
        sa.Column("notify_employee", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("notify_manager", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _timestamp_column("updated_at"),
    )

    op.create_table(
        "pay_period_locks",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("period_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("period_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("locked_by", sa.Integer(), nullable=True),
        _timestamp_column("locked_at"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.ForeignKeyConstraint(["locked_by"], ["users.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("period_start", "period_end", name="uq_pay_period_locks_period"),
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        _timestamp_column("ts_utc"),
        sa.Column("actor_type", audit_actor_type, nullable=False),
        sa.Column("actor_id", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=100), nullable=True),
        sa.Column("entity_id", sa.String(length=100), nullable=True),
        sa.Column("ip", sa.String(length=128), nullable=True),
        sa.Column("user_agent", sa.String(length=1024), nullable=True),
        sa.Column("request_id", sa.String(length=100), nullable=True),
        sa.Column(
            "details",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
    )
    op.create_index("ix_audit_logs_ts_utc", "audit_logs", ["ts_utc"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_action", table_name="audit_logs")
    op.drop_index("ix_audit_logs_ts_utc", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_table("pay_period_locks")
    op.drop_table("overtime_config")
    op.drop_table("timeclock_rules_config")
    op.drop_index("ix_timeclock_entries_status", table_name="timeclock_entries")
    op.drop_index("ix_timeclock_entries_user_clock_in", table_name="timeclock_entries")
    op.drop_index("uq_timeclock_entries_open_per_user", table_name="timeclock_entries")
    op.drop_table("timeclock_entries")
    op.drop_index("ix_manager_assignments_department_id", table_name="manager_assignments")
    op.drop_index("ix_manager_assignments_manager_id", table_name="manager_assignments")
    op.drop_table("manager_assignments")
    op.drop_index("ix_user_capabilities_user_id", table_name="user_capabilities")
    op.drop_table("user_capabilities")
    op.drop_index("ix_users_department_id", table_name="users")
    op.drop_table("users")
    op.drop_table("departments")

    bind = op.get_bind()
    for enum_type in reversed(_ENUMS):
        enum_type.drop(bind, checkfirst=True)
