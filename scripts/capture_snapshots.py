#!/usr/bin/env python
"""Run one snapshot capture outside the HTTP trigger.

Without ``--at`` the current instant is used. With ``--at`` the capture runs
as if it were that instant, which backfills a minute the scheduler missed.
"""
from __future__ import annotations

import argparse
import asyncio
import json
import sys
from datetime import datetime
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from app.db import SessionLocal
from app.logging_utils import setup_json_logging
from app.services.snapshots import SnapshotCaptureJob, SqlSnapshotStore
from app.settings import get_settings, get_trigger_tolerance_minutes


def main() -> int:
    parser = argparse.ArgumentParser(description="Capture presence snapshots for matching groups.")
    parser.add_argument(
        "--at",
        type=datetime.fromisoformat,
        default=None,
        help="ISO instant to capture as; naive values are read in the report time zone.",
    )
    parser.add_argument(
        "--tolerance-minutes",
        type=int,
        default=None,
        help="Override the configured trigger tolerance window.",
    )
    args = parser.parse_args()

    settings = get_settings()
    setup_json_logging(settings.log_level)
    tolerance = get_trigger_tolerance_minutes() if args.tolerance_minutes is None else args.tolerance_minutes
    job = SnapshotCaptureJob(
        SqlSnapshotStore(SessionLocal),
        timezone_name=settings.report_timezone,
        tolerance_minutes=tolerance,
    )

    result = asyncio.run(job.run(args.at))
    print(json.dumps({"message": result.message, **result.to_dict()}, ensure_ascii=False, indent=2))
    return 1 if result.failed_group_ids else 0


if __name__ == "__main__":
    raise SystemExit(main())
