from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.errors import PersonNotFoundError
from app.models import (
    Absence,
    AbsenceStatus,
    HourlyBlockage,
    Organization,
    OrganizationGroup,
    Person,
    PresenceOverride,
    PresenceSnapshot,
    TeamRotation,
)
from app.services.day_clock import format_hhmm, local_now, minutes_of_day, parse_hhmm, report_timezone
from app.services.presence import ResolvedPresence, build_presence_sources, resolve_presence_from_sources

logger = logging.getLogger("app.snapshots")

MINUTES_PER_DAY = 24 * 60


class SqlSnapshotStore:
    """Reads collaborator tables and appends snapshot rows.

    Every method opens its own session so calls can run concurrently on
    worker threads.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def list_report_groups(self) -> list[OrganizationGroup]:
        with self._session_factory() as session:
            return list(
                session.scalars(
                    select(OrganizationGroup)
                    .where(OrganizationGroup.morning_report_time.is_not(None))
                    .order_by(OrganizationGroup.id.asc())
                ).all()
            )

    def list_organization_ids(self, group_id: int) -> list[int]:
        with self._session_factory() as session:
            return list(
                session.scalars(
                    select(Organization.id)
                    .where(Organization.battalion_id == group_id)
                    .order_by(Organization.id.asc())
                ).all()
            )

    def list_active_people(self, organization_ids: list[int]) -> list[Person]:
        with self._session_factory() as session:
            return list(
                session.scalars(
                    select(Person)
                    .where(
                        Person.organization_id.in_(organization_ids),
                        Person.is_active.is_(True),
                    )
                    .order_by(Person.id.asc())
                ).all()
            )

    def get_person(self, person_id: int) -> Person | None:
        with self._session_factory() as session:
            return session.get(Person, person_id)

    def list_rotations(self, organization_ids: list[int]) -> list[TeamRotation]:
        with self._session_factory() as session:
            return list(
                session.scalars(
                    select(TeamRotation)
                    .where(TeamRotation.organization_id.in_(organization_ids))
                    .order_by(TeamRotation.id.asc())
                ).all()
            )

    def list_overrides(self, organization_ids: list[int], day_date: date) -> list[PresenceOverride]:
        with self._session_factory() as session:
            return list(
                session.scalars(
                    select(PresenceOverride).where(
                        PresenceOverride.organization_id.in_(organization_ids),
                        PresenceOverride.day_date == day_date,
                    )
                ).all()
            )

    def list_approved_absences(self, organization_ids: list[int], day_date: date) -> list[Absence]:
        with self._session_factory() as session:
            return list(
                session.scalars(
                    select(Absence)
                    .where(
                        Absence.organization_id.in_(organization_ids),
                        Absence.status == AbsenceStatus.APPROVED.value,
                        Absence.start_date <= day_date,
                        Absence.end_date >= day_date,
                    )
                    .order_by(Absence.start_date.asc(), Absence.id.asc())
                ).all()
            )

    def list_hourly_blockages(self, organization_ids: list[int], day_date: date) -> list[HourlyBlockage]:
        with self._session_factory() as session:
            return list(
                session.scalars(
                    select(HourlyBlockage).where(
                        HourlyBlockage.organization_id.in_(organization_ids),
                        HourlyBlockage.day_date == day_date,
                    )
                ).all()
            )

    def insert_snapshots(self, rows: list[PresenceSnapshot]) -> int:
        with self._session_factory() as session:
            session.add_all(rows)
            try:
                session.commit()
            except Exception:
                session.rollback()
                raise
        return len(rows)

    def list_snapshots(
        self,
        day_date: date,
        *,
        organization_id: int | None = None,
    ) -> list[PresenceSnapshot]:
        stmt = (
            select(PresenceSnapshot)
            .where(PresenceSnapshot.day_date == day_date)
            .order_by(PresenceSnapshot.person_id.asc(), PresenceSnapshot.captured_at.asc(), PresenceSnapshot.id.asc())
        )
        if organization_id is not None:
            stmt = stmt.where(PresenceSnapshot.organization_id == organization_id)
        with self._session_factory() as session:
            return list(session.scalars(stmt).all())


def latest_snapshots(rows: list[PresenceSnapshot]) -> list[PresenceSnapshot]:
    """Keep the newest capture per person and day."""
    latest: dict[tuple[int, date], PresenceSnapshot] = {}
    for row in rows:
        key = (row.person_id, row.day_date)
        current = latest.get(key)
        if current is None or (row.captured_at, row.id or 0) > (current.captured_at, current.id or 0):
            latest[key] = row
    return sorted(latest.values(), key=lambda item: (item.person_id, item.day_date))


def match_report_groups(
    groups: list[OrganizationGroup],
    trigger_time: str,
    *,
    tolerance_minutes: int = 0,
) -> list[OrganizationGroup]:
    if tolerance_minutes <= 0:
        return [group for group in groups if (group.morning_report_time or "").strip() == trigger_time]

    trigger_minutes = minutes_of_day(parse_hhmm(trigger_time))
    matched: list[OrganizationGroup] = []
    for group in groups:
        try:
            report_minutes = minutes_of_day(parse_hhmm(group.morning_report_time or ""))
        except ValueError:
            logger.warning(
                "snapshot_group_report_time_invalid",
                extra={"group_id": group.id, "morning_report_time": group.morning_report_time},
            )
            continue
        # Report times inside (trigger - tolerance, trigger], wrapping midnight.
        if (trigger_minutes - report_minutes) % MINUTES_PER_DAY < tolerance_minutes:
            matched.append(group)
    return matched


CaptureKey = tuple[int, date, str]


def report_occurrence_key(group: OrganizationGroup, local_trigger: datetime) -> CaptureKey:
    """Identify one scheduled report of a group: group id, report day, report time.

    A trigger just after midnight that matches a late report time belongs to
    the previous day's report.
    """
    report_time = (group.morning_report_time or "").strip()
    try:
        report_minutes = minutes_of_day(parse_hhmm(report_time))
    except ValueError:
        return group.id, local_trigger.date(), report_time
    lag_minutes = (minutes_of_day(local_trigger.time()) - report_minutes) % MINUTES_PER_DAY
    return group.id, (local_trigger - timedelta(minutes=lag_minutes)).date(), report_time


def build_snapshot_row(
    person: Person,
    resolved: ResolvedPresence,
    *,
    day_date: date,
    captured_at: datetime,
    trigger_time: str,
) -> PresenceSnapshot:
    return PresenceSnapshot(
        organization_id=person.organization_id,
        person_id=person.id,
        day_date=day_date,
        status=resolved.status,
        start_time=resolved.start_time,
        end_time=resolved.end_time,
        captured_at=captured_at,
        snapshot_definition_time=trigger_time,
    )


@dataclass(slots=True)
class CaptureResult:
    trigger_time: str
    day_date: date
    captured_at: datetime
    matched_group_ids: list[int] = field(default_factory=list)
    failed_group_ids: list[int] = field(default_factory=list)
    skipped_group_ids: list[int] = field(default_factory=list)
    inserted_rows: int = 0

    @property
    def message(self) -> str:
        if not self.matched_group_ids:
            return f"No battalions matching time {self.trigger_time}"
        return "Success"

    def to_dict(self) -> dict[str, Any]:
        return {
            "trigger_time": self.trigger_time,
            "day_date": self.day_date.isoformat(),
            "captured_at": self.captured_at.isoformat(),
            "matched_group_ids": list(self.matched_group_ids),
            "failed_group_ids": list(self.failed_group_ids),
            "skipped_group_ids": list(self.skipped_group_ids),
            "inserted_rows": self.inserted_rows,
        }


class SnapshotCaptureJob:
    def __init__(
        self,
        store: SqlSnapshotStore,
        *,
        timezone_name: str | None = None,
        tolerance_minutes: int = 0,
        clock: Callable[[], datetime] | None = None,
    ):
        self._store = store
        self._tz = report_timezone(timezone_name)
        self._tolerance_minutes = max(0, int(tolerance_minutes))
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def now(self) -> datetime:
        return self._clock()

    def local_time(self, now: datetime | None = None) -> datetime:
        return local_now(self._tz, now or self.now()).replace(second=0, microsecond=0)

    async def run(
        self,
        now: datetime | None = None,
        *,
        captured_keys: set[CaptureKey] | None = None,
    ) -> CaptureResult:
        """Capture every group whose report time matches now.

        When ``captured_keys`` is given, report occurrences already in it are
        skipped and each successful capture is added to it.
        """
        local = local_now(self._tz, now or self.now())
        result = CaptureResult(
            trigger_time=format_hhmm(local.time()),
            day_date=local.date(),
            captured_at=local.astimezone(timezone.utc),
        )
        logger.info("snapshot_capture_started", extra=result.to_dict())

        groups = await asyncio.to_thread(self._store.list_report_groups)
        matching = match_report_groups(
            groups,
            result.trigger_time,
            tolerance_minutes=self._tolerance_minutes,
        )
        if not matching:
            logger.info(
                "snapshot_capture_no_matching_groups",
                extra={"trigger_time": result.trigger_time, "group_count": len(groups)},
            )
            return result

        for group in matching:
            result.matched_group_ids.append(group.id)
            capture_key = report_occurrence_key(group, local)
            if captured_keys is not None and capture_key in captured_keys:
                result.skipped_group_ids.append(group.id)
                continue
            try:
                result.inserted_rows += await self._capture_group(group, result)
            except Exception:
                result.failed_group_ids.append(group.id)
                logger.exception(
                    "snapshot_group_capture_failed",
                    extra={
                        "group_id": group.id,
                        "group_name": group.name,
                        "trigger_time": result.trigger_time,
                        "day_date": result.day_date.isoformat(),
                    },
                )
            else:
                if captured_keys is not None:
                    captured_keys.add(capture_key)

        logger.info("snapshot_capture_finished", extra=result.to_dict())
        return result

    async def _capture_group(self, group: OrganizationGroup, result: CaptureResult) -> int:
        day_date = result.day_date
        organization_ids = await asyncio.to_thread(self._store.list_organization_ids, group.id)
        if not organization_ids:
            logger.info("snapshot_group_without_organizations", extra={"group_id": group.id})
            return 0

        people, rotations, overrides, absences, blockages = await asyncio.gather(
            asyncio.to_thread(self._store.list_active_people, organization_ids),
            asyncio.to_thread(self._store.list_rotations, organization_ids),
            asyncio.to_thread(self._store.list_overrides, organization_ids, day_date),
            asyncio.to_thread(self._store.list_approved_absences, organization_ids, day_date),
            asyncio.to_thread(self._store.list_hourly_blockages, organization_ids, day_date),
        )

        sources = build_presence_sources(
            overrides=overrides,
            absences=absences,
            rotations=rotations,
            blockages=blockages,
        )
        rows = [
            build_snapshot_row(
                person,
                resolve_presence_from_sources(person, day_date, sources),
                day_date=day_date,
                captured_at=result.captured_at,
                trigger_time=result.trigger_time,
            )
            for person in people
            if person.is_active is not False
        ]
        if not rows:
            return 0

        inserted = await asyncio.to_thread(self._store.insert_snapshots, rows)
        logger.info(
            "snapshot_group_captured",
            extra={
                "group_id": group.id,
                "organization_ids": organization_ids,
                "inserted_rows": inserted,
                "trigger_time": result.trigger_time,
            },
        )
        return inserted


def load_person_presence(store: SqlSnapshotStore, person_id: int, day_date: date) -> tuple[Person, ResolvedPresence]:
    person = store.get_person(person_id)
    if person is None:
        raise PersonNotFoundError(person_id)
    organization_ids = [person.organization_id]
    sources = build_presence_sources(
        overrides=store.list_overrides(organization_ids, day_date),
        absences=store.list_approved_absences(organization_ids, day_date),
        rotations=store.list_rotations(organization_ids),
        blockages=store.list_hourly_blockages(organization_ids, day_date),
    )
    return person, resolve_presence_from_sources(person, day_date, sources)


async def run_snapshot_worker(
    job: SnapshotCaptureJob,
    stop_event: asyncio.Event,
    *,
    interval_seconds: float,
) -> None:
    """Call ``job.run`` every interval.

    Runs at most once per local minute and captures each group report at most
    once, even when a tolerance window matches it on several minutes.
    """
    last_trigger_key: str | None = None
    captured_keys: set[CaptureKey] = set()
    while not stop_event.is_set():
        now = job.now()
        trigger_key = job.local_time(now).isoformat()
        if trigger_key != last_trigger_key:
            last_trigger_key = trigger_key
            # Keep yesterday for reports whose window wraps midnight.
            oldest_day = job.local_time(now).date() - timedelta(days=1)
            captured_keys = {key for key in captured_keys if key[1] >= oldest_day}
            try:
                result = await job.run(now, captured_keys=captured_keys)
            except Exception:
                logger.exception("snapshot_worker_tick_failed", extra={"trigger_key": trigger_key})
            else:
                if result.matched_group_ids:
                    logger.info("snapshot_worker_tick", extra=result.to_dict())

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            continue
