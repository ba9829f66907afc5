from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError


@dataclass(frozen=True, slots=True)
class SchemaGuardResult:
    ok: bool
    checked_at_utc: datetime
    issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "checked_at_utc": self.checked_at_utc.isoformat(),
            "issues": list(self.issues),
            "warnings": list(self.warnings),
            "issue_count": len(self.issues),
            "warning_count": len(self.warnings),
        }


REQUIRED_TABLE_COLUMNS: dict[str, set[str]] = {
    "users": {"id", "department_id", "is_active"},
    "user_capabilities": {"user_id", "resource", "action"},
    "manager_assignments": {"manager_id", "department_id"},
    "timeclock_entries": {
        "id",
        "user_id",
        "clock_in",
        "clock_out",
        "raw_duration",
        "break_deducted",
        "duration",
        "status",
        "flag_reason",
        "approved_by_kind",
        "approved_by_user_id",
        "is_locked",
        "last_edited_by_user_id",
    },
    "timeclock_rules_config": {"id", "break_rules", "rounding_unit", "rounding_direction"},
    "overtime_config": {"id", "daily_threshold_minutes", "weekly_threshold_minutes", "notify_employee"},
    "pay_period_locks": {"period_start", "period_end", "is_active"},
    "audit_logs": {"id", "action", "details"},
    "alembic_version": {"version_num"},
}

# Unique indexes the store relies on for race freedom.
REQUIRED_UNIQUE_INDEXES: dict[str, set[str]] = {
    "timeclock_entries": {"uq_timeclock_entries_open_per_user"},
}

REQUIRED_ENUM_VALUES: dict[str, set[str]] = {
    "timeclock_entry_status": {"pending", "approved", "rejected"},
    "timeclock_approver_kind": {"HUMAN", "SYSTEM"},
}


def verify_runtime_schema(engine: Engine) -> SchemaGuardResult:
    issues: list[str] = []
    warnings: list[str] = []
    checked_at_utc = datetime.now(timezone.utc)
    inspector = inspect(engine)

    for table_name, required_columns in REQUIRED_TABLE_COLUMNS.items():
        try:
            column_names = {str(item.get("name")) for item in inspector.get_columns(table_name)}
        except SQLAlchemyError as exc:
            issues.append(f"TABLE_UNREADABLE:{table_name}:{exc.__class__.__name__}")
            continue

        missing_columns = sorted(item for item in required_columns if item not in column_names)
        if missing_columns:
            issues.append(f"MISSING_COLUMNS:{table_name}:{','.join(missing_columns)}")

    for table_name, required_indexes in REQUIRED_UNIQUE_INDEXES.items():
        try:
            indexes = inspector.get_indexes(table_name)
        except SQLAlchemyError as exc:
            issues.append(f"INDEX_INSPECTION_FAILED:{table_name}:{exc.__class__.__name__}")
            continue
        unique_names = {str(item.get("name")) for item in indexes if item.get("unique")}
        missing_indexes = sorted(item for item in required_indexes if item not in unique_names)
        if missing_indexes:
            issues.append(f"MISSING_UNIQUE_INDEX:{table_name}:{','.join(missing_indexes)}")

    if engine.dialect.name == "postgresql":
        try:
            enums = inspector.get_enums() or []
        except SQLAlchemyError as exc:
            warnings.append(f"ENUM_INSPECTION_FAILED:{exc.__class__.__name__}")
            enums = []

        enum_values_by_name: dict[str, set[str]] = {}
        for enum_item in enums:
            name = str(enum_item.get("name") or "").strip()
            if not name:
                continue
            labels = enum_item.get("labels")
            if isinstance(labels, list):
                enum_values_by_name[name] = {str(label) for label in labels}

        for enum_name, required_values in REQUIRED_ENUM_VALUES.items():
            if enum_name not in enum_values_by_name:
                warnings.append(f"ENUM_NOT_FOUND:{enum_name}")
                continue
            missing_values = sorted(item for item in required_values if item not in enum_values_by_name[enum_name])
            if missing_values:
                issues.append(f"MISSING_ENUM_VALUES:{enum_name}:{','.join(missing_values)}")

    try:
        with engine.connect() as connection:
            row = connection.execute(text("SELECT version_num FROM alembic_version LIMIT 1")).scalar()
            version = str(row).strip() if row is not None else ""
            if not version:
                issues.append("ALEMBIC_VERSION_EMPTY")
    except SQLAlchemyError as exc:
        issues.append(f"ALEMBIC_VERSION_CHECK_FAILED:{exc.__class__.__name__}")

    return SchemaGuardResult(
        ok=len(issues) == 0,
        checked_at_utc=checked_at_utc,
        issues=issues,
        warnings=warnings,
    )
