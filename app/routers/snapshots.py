import logging
from datetime import date

from fastapi import APIRouter, Depends, Query
from fastapi.responses import PlainTextResponse

from app.db import SessionLocal
from app.schemas import PersonPresenceRead, PresenceSnapshotRead, UnavailableBlockRead
from app.services.day_clock import format_hhmm
from app.services.snapshots import (
    SnapshotCaptureJob,
    SqlSnapshotStore,
    latest_snapshots,
    load_person_presence,
)
from app.settings import get_settings, get_trigger_tolerance_minutes

router = APIRouter(tags=["presence"])
logger = logging.getLogger("app.snapshots")


def get_snapshot_store() -> SqlSnapshotStore:
    return SqlSnapshotStore(SessionLocal)


def get_capture_job(store: SqlSnapshotStore = Depends(get_snapshot_store)) -> SnapshotCaptureJob:
    return SnapshotCaptureJob(
        store,
        timezone_name=get_settings().report_timezone,
        tolerance_minutes=get_trigger_tolerance_minutes(),
    )


@router.api_route(
    "/functions/capture-snapshots",
    methods=["GET", "POST"],
    response_class=PlainTextResponse,
)
async def capture_snapshots_endpoint(
    job: SnapshotCaptureJob = Depends(get_capture_job),
) -> PlainTextResponse:
    try:
        result = await job.run()
    except Exception as exc:
        logger.exception("snapshot_capture_failed")
        return PlainTextResponse(str(exc), status_code=500)
    return PlainTextResponse(result.message, status_code=200)


@router.get("/api/presence/snapshots", response_model=list[PresenceSnapshotRead])
def list_snapshots_endpoint(
    day: date = Query(),
    organization_id: int | None = Query(default=None, ge=1),
    latest_only: bool = Query(default=True),
    store: SqlSnapshotStore = Depends(get_snapshot_store),
) -> list[PresenceSnapshotRead]:
    rows = store.list_snapshots(day, organization_id=organization_id)
    if latest_only:
        rows = latest_snapshots(rows)
    return [
        PresenceSnapshotRead(
            id=row.id,
            organization_id=row.organization_id,
            person_id=row.person_id,
            day_date=row.day_date,
            status=row.status,
            start_time=format_hhmm(row.start_time),
            end_time=format_hhmm(row.end_time),
            captured_at=row.captured_at,
            snapshot_definition_time=row.snapshot_definition_time,
        )
        for row in rows
    ]


@router.get("/api/presence/people/{person_id}", response_model=PersonPresenceRead)
def person_presence_endpoint(
    person_id: int,
    day: date | None = Query(default=None),
    job: SnapshotCaptureJob = Depends(get_capture_job),
    store: SqlSnapshotStore = Depends(get_snapshot_store),
) -> PersonPresenceRead:
    day_date = day or job.local_time().date()
    person, resolved = load_person_presence(store, person_id, day_date)
    start_time, end_time = resolved.window.as_strings()
    return PersonPresenceRead(
        person_id=person.id,
        organization_id=person.organization_id,
        day_date=day_date,
        status=resolved.status,
        start_time=start_time,
        end_time=end_time,
        source=resolved.source,
        unavailable_blocks=[UnavailableBlockRead(**block.to_dict()) for block in resolved.unavailable_blocks],
    )
