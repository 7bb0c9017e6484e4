#!/usr/bin/env python
from __future__ import annotations

import json
from datetime import datetime, timezone

from sqlalchemy import create_engine, text

from app.services.schema_guard import EXPECTED_ALEMBIC_HEAD
from app.settings import get_settings


def run() -> dict:
    database_url = get_settings().database_url
    engine = create_engine(database_url)
    report: dict = {
        "generated_at_utc": datetime.now(timezone.utc).isoformat(),
        "database_url": engine.url.render_as_string(hide_password=True),
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

    with engine.connect() as conn:
        tables = set(
            conn.execute(
                text(
                    """
                    select table_name
                    from information_schema.tables
                    where table_schema='public'
                    """
                )
            ).scalars()
        )

        current_versions: list[str] = []
        if "alembic_version" in tables:
            current_versions = [
                row[0]
                for row in conn.execute(text("select version_num from alembic_version")).fetchall()
            ]
        add("alembic_version", "ok" if current_versions else "fail", {"current": current_versions})

        add(
            "migration_up_to_date",
            "ok" if EXPECTED_ALEMBIC_HEAD in current_versions else "warn",
            {"expected_head": EXPECTED_ALEMBIC_HEAD, "current": current_versions},
        )

        required_tables = ["facilities", "users", "control_items", "audit_logs"]
        missing = [table for table in required_tables if table not in tables]
        add("missing_tables", "fail" if missing else "ok", {"missing": missing})

        if "control_items" in tables:
            duplicate_items = conn.execute(
                text(
                    """
                    select period, title, description, facility_id, count(*)
                    from control_items
                    group by period, title, description, facility_id
                    having count(*) > 1
                    limit 20
                    """
                )
            ).fetchall()
            add(
                "duplicate_control_items_in_period",
                "warn" if duplicate_items else "ok",
                {"rows": [list(row) for row in duplicate_items]},
            )

            unstamped_approvals = conn.execute(
                text(
                    """
                    select id
                    from control_items
                    where approval_status = 'approved'
                      and (approved_by is null or approved_at is null)
                    limit 20
                    """
                )
            ).fetchall()
            add(
                "approved_without_approver",
                "warn" if unstamped_approvals else "ok",
                {"sample_ids": [row[0] for row in unstamped_approvals]},
            )

            if "facilities" in tables:
                orphan_facilities = conn.execute(
                    text(
                        """
                        select c.id, c.facility_id
                        from control_items c
                        left join facilities f on cast(f.id as varchar) = c.facility_id
                        where c.facility_id is not null and f.id is null
                        limit 20
                        """
                    )
                ).fetchall()
                add(
                    "control_item_orphan_facility",
                    "warn" if orphan_facilities else "ok",
                    {"rows": [list(row) for row in orphan_facilities]},
                )

        if "users" in tables:
            active_admins = conn.execute(
                text("select count(*) from users where role = 'admin' and is_active = true")
            ).scalar_one()
            add("active_admin_present", "ok" if active_admins else "fail", {"count": active_admins})

    return report


if __name__ == "__main__":
    print(json.dumps(run(), ensure_ascii=False, indent=2))
