from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import inspect
from sqlalchemy.engine import Engine


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
    "battalions": {"id", "morning_report_time"},
    "organizations": {"id", "battalion_id"},
    "people": {"id", "team_id", "organization_id", "is_active"},
    "team_rotations": {
        "team_id",
        "organization_id",
        "start_date",
        "days_on_base",
        "days_at_home",
        "arrival_time",
        "departure_time",
    },
    "absences": {"person_id", "organization_id", "start_date", "end_date", "start_time", "end_time", "status"},
    "unified_presence": {"person_id", "organization_id", "date", "status", "start_time", "end_time"},
    "hourly_blockages": {"person_id", "organization_id", "date", "start_time", "end_time"},
    "daily_attendance_snapshots": {
        "organization_id",
        "person_id",
        "date",
        "status",
        "start_time",
        "end_time",
        "captured_at",
        "snapshot_definition_time",
    },
}


def verify_runtime_schema(engine: Engine) -> SchemaGuardResult:
    issues: list[str] = []
    warnings: list[str] = []
    checked_at_utc = datetime.now(timezone.utc)

    try:
        inspector = inspect(engine)
        table_names = set(inspector.get_table_names())
    except Exception as exc:
        return SchemaGuardResult(
            ok=False,
            checked_at_utc=checked_at_utc,
            issues=[f"SCHEMA_UNREADABLE:{exc.__class__.__name__}"],
            warnings=[],
        )

    for table_name, required_columns in REQUIRED_TABLE_COLUMNS.items():
        if table_name not in table_names:
            issues.append(f"MISSING_TABLE:{table_name}")
            continue
        column_names = {str(item.get("name")) for item in inspector.get_columns(table_name)}
        missing_columns = sorted(item for item in required_columns if item not in column_names)
        if missing_columns:
            issues.append(f"MISSING_COLUMNS:{table_name}:{','.join(missing_columns)}")

    if "daily_attendance_snapshots" in table_names:
        # Repeated captures append rows; a unique key turns them into failed group inserts.
        if inspector.get_unique_constraints("daily_attendance_snapshots"):
            warnings.append("SNAPSHOT_UNIQUE_CONSTRAINT_PRESENT:daily_attendance_snapshots")

    return SchemaGuardResult(
        ok=len(issues) == 0,
        checked_at_utc=checked_at_utc,
        issues=issues,
        warnings=warnings,
    )
