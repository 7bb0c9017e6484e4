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
    "control_items": {
        "id",
        "title",
        "description",
        "period",
        "date",
        "facility_id",
        "status",
        "approval_status",
        "approved_by",
        "approved_at",
        "rejection_reason",
    },
    "facilities": {"id", "name"},
    "users": {"id", "username", "role"},
    "audit_logs": {"id", "action", "details"},
    "alembic_version": {"version_num"},
}

# Only checked on backends with native enums (PostgreSQL).
REQUIRED_ENUM_VALUES: dict[str, set[str]] = {
    "approval_status": {"pending", "approved", "rejected"},
    "user_role": {"admin", "user"},
}


EXPECTED_ALEMBIC_HEAD = "0001_initial"


def _missing_column_issues(inspector: Any) -> list[str]:
    issues: list[str] = []
    available_tables = set(inspector.get_table_names())
    for table_name, required_columns in REQUIRED_TABLE_COLUMNS.items():
        if table_name not in available_tables:
            issues.append(f"MISSING_TABLE:{table_name}")
            continue
        column_names = {str(item.get("name")) for item in inspector.get_columns(table_name)}
        missing_columns = sorted(item for item in required_columns if item not in column_names)
        if missing_columns:
            issues.append(f"MISSING_COLUMNS:{table_name}:{','.join(missing_columns)}")
    return issues


def _enum_findings(inspector: Any) -> tuple[list[str], list[str]]:
    get_enums = getattr(inspector, "get_enums", None)
    if get_enums is None:
        return [], []

    issues: list[str] = []
    warnings: list[str] = []
    labels_by_name = {
        str(item.get("name")): {str(label) for label in item.get("labels") or []}
        for item in get_enums() or []
        if item.get("name")
    }
    for enum_name, required_values in REQUIRED_ENUM_VALUES.items():
        if enum_name not in labels_by_name:
            warnings.append(f"ENUM_NOT_FOUND:{enum_name}")
            continue
        missing_values = sorted(required_values - labels_by_name[enum_name])
        if missing_values:
            issues.append(f"MISSING_ENUM_VALUES:{enum_name}:{','.join(missing_values)}")
    return issues, warnings


def verify_runtime_schema(engine: Engine) -> SchemaGuardResult:
    issues: list[str] = []
    warnings: list[str] = []
    checked_at_utc = datetime.now(timezone.utc)

    try:
        inspector = inspect(engine)
        issues.extend(_missing_column_issues(inspector))
        enum_issues, enum_warnings = _enum_findings(inspector)
        issues.extend(enum_issues)
        warnings.extend(enum_warnings)
    except SQLAlchemyError as exc:
        issues.append(f"SCHEMA_INSPECTION_FAILED:{exc.__class__.__name__}")

    if not any(item.startswith("MISSING_TABLE:alembic_version") for item in issues):
        try:
            with engine.connect() as connection:
                row = connection.execute(text("SELECT version_num FROM alembic_version LIMIT 1")).scalar()
        except SQLAlchemyError as exc:
            issues.append(f"ALEMBIC_VERSION_CHECK_FAILED:{exc.__class__.__name__}")
        else:
            version = str(row).strip() if row is not None else ""
            if not version:
                issues.append("ALEMBIC_VERSION_EMPTY")
            elif version != EXPECTED_ALEMBIC_HEAD:
                warnings.append(f"ALEMBIC_VERSION_MISMATCH:{version}")

    return SchemaGuardResult(
        ok=len(issues) == 0,
        checked_at_utc=checked_at_utc,
        issues=issues,
        warnings=warnings,
    )
