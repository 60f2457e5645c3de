#!/usr/bin/env python
from __future__ import annotations

import json
import sys
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import create_engine, text

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from app.services.day_clock import parse_hhmm
from app.settings import get_store_url


def _invalid_report_times(rows: list[tuple[int, str]]) -> list[dict]:
    invalid: list[dict] = []
    for group_id, report_time in rows:
        try:
            parse_hhmm(report_time)
        except ValueError:
            invalid.append({"group_id": group_id, "morning_report_time": report_time})
    return invalid


def run() -> dict:
    store_url = get_store_url()
    engine = create_engine(store_url)
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

    try:
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

            if "team_rotations" in tables:
                malformed_rotations = conn.execute(
                    text(
                        """
                        select id, team_id, days_on_base, days_at_home
                        from team_rotations
                        where days_on_base is null
                           or days_at_home is null
                           or days_on_base < 0
                           or days_at_home < 0
                           or days_on_base + days_at_home <= 0
                        limit 50
                        """
                    )
                ).fetchall()
                add(
                    "malformed_team_rotations",
                    "warn" if malformed_rotations else "ok",
                    {"rows": [list(row) for row in malformed_rotations]},
                )

            if "battalions" in tables:
                scheduled_groups = conn.execute(
                    text(
                        """
                        select id, morning_report_time
                        from battalions
                        where morning_report_time is not null
                        """
                    )
                ).fetchall()
                invalid = _invalid_report_times([(row[0], row[1]) for row in scheduled_groups])
                add(
                    "invalid_morning_report_time",
                    "fail" if invalid else "ok",
                    {"scheduled": len(scheduled_groups), "invalid": invalid},
                )

            if "daily_attendance_snapshots" in tables:
                duplicate_snapshots = conn.execute(
                    text(
                        """
                        select person_id, date, count(*)
                        from daily_attendance_snapshots
                        group by person_id, date
                        having count(*) > 1
                        order by date desc
                        limit 50
                        """
                    )
                ).fetchall()
                add(
                    "duplicate_daily_snapshots",
                    "warn" if duplicate_snapshots else "ok",
                    {"rows": [[row[0], str(row[1]), row[2]] for row in duplicate_snapshots]},
                )
    finally:
        engine.dispose()

    return report


if __name__ == "__main__":
    print(json.dumps(run(), ensure_ascii=False, indent=2))
