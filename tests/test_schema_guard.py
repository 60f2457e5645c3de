from __future__ import annotations

import unittest
from unittest.mock import patch

from app.services.schema_guard import REQUIRED_TABLE_COLUMNS, verify_runtime_schema


class _FakeInspector:
    def __init__(
        self,
        *,
        columns_by_table: dict[str, set[str]],
        unique_constraints: dict[str, list[dict[str, object]]] | None = None,
    ):
        self._columns_by_table = columns_by_table
        self._unique_constraints = unique_constraints or {}

    def get_table_names(self):  # type: ignore[no-untyped-def]
        return list(self._columns_by_table)

    def get_columns(self, table_name: str):  # type: ignore[no-untyped-def]
        columns = self._columns_by_table[table_name]
        return [{"name": item} for item in columns]

    def get_unique_constraints(self, table_name: str):  # type: ignore[no-untyped-def]
        return self._unique_constraints.get(table_name, [])


def _complete_columns() -> dict[str, set[str]]:
    return {table: set(columns) | {"id"} for table, columns in REQUIRED_TABLE_COLUMNS.items()}


class SchemaGuardTests(unittest.TestCase):
    def test_verify_runtime_schema_ok_when_required_columns_exist(self) -> None:
        fake_inspector = _FakeInspector(columns_by_table=_complete_columns())

        with patch("app.services.schema_guard.inspect", return_value=fake_inspector):
            result = verify_runtime_schema(object())  # type: ignore[arg-type]

        self.assertTrue(result.ok)
        self.assertEqual(result.issues, [])
        self.assertEqual(result.warnings, [])

    def test_verify_runtime_schema_reports_missing_tables_and_columns(self) -> None:
        columns = _complete_columns()
        columns.pop("hourly_blockages")
        columns["team_rotations"].discard("days_at_home")
        columns["battalions"].discard("morning_report_time")
        fake_inspector = _FakeInspector(columns_by_table=columns)

        with patch("app.services.schema_guard.inspect", return_value=fake_inspector):
            result = verify_runtime_schema(object())  # type: ignore[arg-type]

        self.assertFalse(result.ok)
        self.assertIn("MISSING_TABLE:hourly_blockages", result.issues)
        self.assertIn("MISSING_COLUMNS:team_rotations:days_at_home", result.issues)
        self.assertIn("MISSING_COLUMNS:battalions:morning_report_time", result.issues)
        self.assertEqual(result.to_dict()["issue_count"], 3)

    def test_unique_snapshot_constraint_is_a_warning(self) -> None:
        fake_inspector = _FakeInspector(
            columns_by_table=_complete_columns(),
            unique_constraints={
                "daily_attendance_snapshots": [{"name": "uq_snapshot_person_day", "column_names": ["person_id", "date"]}]
            },
        )

        with patch("app.services.schema_guard.inspect", return_value=fake_inspector):
            result = verify_runtime_schema(object())  # type: ignore[arg-type]

        self.assertTrue(result.ok)
        self.assertEqual(result.warnings, ["SNAPSHOT_UNIQUE_CONSTRAINT_PRESENT:daily_attendance_snapshots"])

    def test_unreadable_store_is_reported_not_raised(self) -> None:
        with patch("app.services.schema_guard.inspect", side_effect=ConnectionError("refused")):
            result = verify_runtime_schema(object())  # type: ignore[arg-type]

        self.assertFalse(result.ok)
        self.assertEqual(result.issues, ["SCHEMA_UNREADABLE:ConnectionError"])


if __name__ == "__main__":
    unittest.main()
