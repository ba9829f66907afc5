#!/usr/bin/env python
from __future__ import annotations

import json
from datetime import datetime, timezone

from sqlalchemy import inspect, text

from timeclock.db import build_engine
from timeclock.settings import get_settings

EXPECTED_HEAD = "0001_initial"


def run() -> dict:
    database_url = get_settings().database_url
    engine = build_engine(database_url)
    report: dict = {
        "generated_at_utc": datetime.now(timezone.utc).isoformat(),
        "checks": [],
    }

    def add(name: str, status: str, details: dict) -> None:
        report["checks"].append(
            {
                "name": name,
                "status": status,
                "details": details,
            }
        )

    tables = set(inspect(engine).get_table_names())
    with engine.connect() as conn:
        current_versions: list[str] = []
        if "alembic_version" in tables:
            current_versions = [
                row[0]
                for row in conn.execute(text("select version_num from alembic_version")).fetchall()
            ]
        add("alembic_version", "ok" if current_versions else "fail", {"current": current_versions})

        add(
            "migration_up_to_date",
            "ok" if EXPECTED_HEAD in current_versions else "warn",
            {"expected_head": EXPECTED_HEAD, "current": current_versions},
        )

        if "timeclock_entries" in tables:
            duplicate_open_sessions = conn.execute(
                text(
                    """
                    select user_id, count(*)
                    from timeclock_entries
                    where clock_out is null
                    group by user_id
                    having count(*) > 1
                    """
                )
            ).fetchall()
            add(
                "duplicate_open_sessions",
                "fail" if duplicate_open_sessions else "ok",
                {"rows": [list(row) for row in duplicate_open_sessions]},
            )

            unlocked_approved = conn.execute(
                text(
                    """
                    select id
                    from timeclock_entries
                    where status = 'approved' and is_locked = false
                    limit 20
                    """
                )
            ).fetchall()
            add(
                "approved_entries_not_locked",
                "fail" if unlocked_approved else "ok",
                {"sample_ids": [row[0] for row in unlocked_approved]},
            )

            orphan_users = conn.execute(
                text(
                    """
                    select t.id
                    from timeclock_entries t
                    left join users u on u.id = t.user_id
                    where u.id is null
                    limit 20
                    """
                )
            ).fetchall()
            add(
                "timeclock_orphan_user",
                "fail" if orphan_users else "ok",
                {"sample_ids": [row[0] for row in orphan_users]},
            )

        if "timeclock_rules_config" in tables:
            rules_rows = conn.execute(text("select count(*) from timeclock_rules_config")).scalar() or 0
            add(
                "rules_config_singleton",
                "ok" if rules_rows <= 1 else "warn",
                {"rows": int(rules_rows)},
            )

    engine.dispose()
    return report


if __name__ == "__main__":
    print(json.dumps(run(), ensure_ascii=False, indent=2))
