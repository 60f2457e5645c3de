import asyncio
import logging
import time
from contextlib import suppress
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, Request

from app.db import SessionLocal, engine
from app.errors import register_exception_handlers
from app.logging_utils import setup_json_logging
from app.routers import snapshots
from app.services.schema_guard import SchemaGuardResult, verify_runtime_schema
from app.services.snapshots import SnapshotCaptureJob, SqlSnapshotStore, run_snapshot_worker
from app.settings import get_settings, get_snapshot_worker_interval_seconds, get_trigger_tolerance_minutes

settings = get_settings()
setup_json_logging(settings.log_level)
request_logger = logging.getLogger("app.request")
worker_logger = logging.getLogger("app.snapshot_worker")

app = FastAPI(title=settings.app_name, version="0.1.0")
register_exception_handlers(app)
app.include_router(snapshots.router)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or uuid4().hex
    request.state.request_id = request_id
    started = time.perf_counter()
    response = None
    try:
        response = await call_next(request)
        response.headers["X-Request-Id"] = request_id
        return response
    finally:
        request_logger.info(
            "request_complete",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code if response is not None else 500,
                "latency_ms": round((time.perf_counter() - started) * 1000, 2),
            },
        )


@app.on_event("startup")
async def run_schema_guard() -> None:
    result = await asyncio.to_thread(verify_runtime_schema, engine)
    app.state.schema_guard_result = result
    if result.ok:
        worker_logger.info("schema_guard_ok", extra=result.to_dict())
        return

    worker_logger.error("schema_guard_failed", extra=result.to_dict())
    if settings.schema_guard_strict:
        raise RuntimeError(f"Runtime schema guard failed: {'; '.join(result.issues)}")


@app.on_event("startup")
async def start_snapshot_worker() -> None:
    if not settings.snapshot_worker_enabled or getattr(app.state, "snapshot_worker_task", None) is not None:
        return

    tolerance_minutes = get_trigger_tolerance_minutes()
    interval_seconds = get_snapshot_worker_interval_seconds()
    job = SnapshotCaptureJob(
        SqlSnapshotStore(SessionLocal),
        timezone_name=settings.report_timezone,
        tolerance_minutes=tolerance_minutes,
    )
    stop_event = asyncio.Event()
    app.state.snapshot_worker_stop_event = stop_event
    app.state.snapshot_worker_task = asyncio.create_task(
        run_snapshot_worker(job, stop_event, interval_seconds=interval_seconds)
    )
    worker_logger.info(
        "snapshot_worker_started",
        extra={
            "interval_seconds": interval_seconds,
            "report_timezone": settings.report_timezone,
            "tolerance_minutes": tolerance_minutes,
        },
    )


@app.on_event("shutdown")
async def stop_snapshot_worker() -> None:
    stop_event: asyncio.Event | None = getattr(app.state, "snapshot_worker_stop_event", None)
    task: asyncio.Task[None] | None = getattr(app.state, "snapshot_worker_task", None)
    if stop_event is not None:
        stop_event.set()
    if task is not None:
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
    app.state.snapshot_worker_stop_event = None
    app.state.snapshot_worker_task = None
    worker_logger.info("snapshot_worker_stopped")


@app.get("/health")
def health() -> dict[str, Any]:
    schema_guard_result: SchemaGuardResult | None = getattr(app.state, "schema_guard_result", None)
    if schema_guard_result is None:
        schema_guard_result = SchemaGuardResult(
            ok=False,
            checked_at_utc=datetime.now(timezone.utc),
            issues=["SCHEMA_GUARD_NOT_RUN"],
        )
    worker_task: asyncio.Task[None] | None = getattr(app.state, "snapshot_worker_task", None)
    return {
        "status": "ok",
        "schema_guard": schema_guard_result.to_dict(),
        "snapshot_worker": {
            "enabled": settings.snapshot_worker_enabled,
            "running": worker_task is not None and not worker_task.done(),
        },
    }
