#!/usr/bin/env python
from __future__ import annotations

import json
import math
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import create_engine

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from app.services.schema_guard import verify_runtime_schema
from app.settings import (
    get_settings,
    get_snapshot_worker_interval_seconds,
    get_store_url,
    get_trigger_tolerance_minutes,
)

# Cadence of the external scheduler that calls the capture endpoint.
EXTERNAL_TRIGGER_CADENCE_MINUTES = 15


@dataclass(slots=True)
class CheckResult:
    name: str
    status: str
    details: dict[str, Any]

    @property
    def ok(self) -> bool:
        return self.status == "ok"


def _check_report_timezone() -> CheckResult:
    name = (get_settings().report_timezone or "").strip()
    try:
        ZoneInfo(name)
        valid = True
    except (ZoneInfoNotFoundError, ValueError):
        valid = False
    return CheckResult(
        name="report_timezone",
        status="ok" if valid else "fail",
        details={"report_timezone": name, "valid": valid},
    )


def _invocation_cadence_minutes() -> int:
    if get_settings().snapshot_worker_enabled:
        return max(1, math.ceil(get_snapshot_worker_interval_seconds() / 60))
    return EXTERNAL_TRIGGER_CADENCE_MINUTES


def _check_trigger_window() -> CheckResult:
    configured = get_settings().snapshot_trigger_tolerance_minutes
    effective = get_trigger_tolerance_minutes()
    cadence = _invocation_cadence_minutes()
    # Each invocation matches the trailing window, so a window longer than the
    # gap between invocations matches the same report on consecutive runs.
    status = "ok" if effective <= cadence else "warn"
    return CheckResult(
        name="snapshot_trigger_window",
        status=status,
        details={
            "configured_minutes": configured,
            "effective_minutes": effective,
            "invocation_cadence_minutes": cadence,
            "worker_enabled": get_settings().snapshot_worker_enabled,
        },
    )


def _check_store_schema() -> CheckResult:
    settings = get_settings()
    if not (settings.store_url or "").strip():
        return CheckResult(
            name="store_schema_guard",
            status="warn",
            details={"reason": "STORE_URL_NOT_SET"},
        )

    engine = create_engine(get_store_url(), pool_pre_ping=True)
    try:
        schema_result = verify_runtime_schema(engine)
    finally:
        engine.dispose()

    return CheckResult(
        name="store_schema_guard",
        status="ok" if schema_result.ok else "fail",
        details={
            "schema_guard_ok": schema_result.ok,
            "schema_guard_issues": schema_result.issues,
            "schema_guard_warnings": schema_result.warnings,
        },
    )


def main() -> int:
    checks = [
        _check_report_timezone(),
        _check_trigger_window(),
        _check_store_schema(),
    ]
    failed_checks = [check for check in checks if check.status == "fail"]
    summary = {
        "generated_at_utc": datetime.now(timezone.utc).isoformat(),
        "ok": len(failed_checks) == 0,
        "checks": [
            {
                "name": check.name,
                "status": check.status,
                "details": check.details,
            }
            for check in checks
        ],
    }
    print(json.dumps(summary, ensure_ascii=False, indent=2))
    return 0 if len(failed_checks) == 0 else 1


if __name__ == "__main__":
    raise SystemExit(main())
