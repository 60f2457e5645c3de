from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field, replace
from datetime import date, time
from typing import Any

from app.models import (
    Absence,
    AbsenceStatus,
    HourlyBlockage,
    Person,
    PresenceOverride,
    PresenceStatus,
    TeamRotation,
)
from app.services.day_clock import DAY_END, DAY_START, TimeWindow, format_hhmm, normalize_time, to_day_date
from app.services.rotation import RotationPhase, resolve_rotation_phase, rotation_covers_day, rotation_window

SOURCE_OVERRIDE = "override"
SOURCE_ABSENCE = "absence"
SOURCE_ROTATION = "rotation"
SOURCE_DEFAULT = "default"

BLOCK_KIND_ABSENCE = "absence"
BLOCK_KIND_HOURLY = "hourly_blockage"


@dataclass(frozen=True, slots=True)
class UnavailableBlock:
    start: time
    end: time
    kind: str
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "start": format_hhmm(self.start),
            "end": format_hhmm(self.end),
            "kind": self.kind,
            "reason": self.reason,
        }


@dataclass(frozen=True, slots=True)
class ResolvedPresence:
    status: str
    window: TimeWindow
    source: str
    unavailable_blocks: tuple[UnavailableBlock, ...] = ()

    @property
    def start_time(self) -> time:
        return self.window.start

    @property
    def end_time(self) -> time:
        return self.window.end

    def to_dict(self) -> dict[str, Any]:
        start, end = self.window.as_strings()
        return {
            "status": self.status,
            "start_time": start,
            "end_time": end,
            "source": self.source,
            "unavailable_blocks": [block.to_dict() for block in self.unavailable_blocks],
        }


@dataclass(frozen=True, slots=True)
class PresenceSources:
    overrides: dict[tuple[int, date], PresenceOverride] = field(default_factory=dict)
    absences_by_person: dict[int, list[Absence]] = field(default_factory=dict)
    rotations_by_team: dict[int, TeamRotation] = field(default_factory=dict)
    blockages_by_person: dict[int, list[HourlyBlockage]] = field(default_factory=dict)


PresenceRule = Callable[[Person, date, PresenceSources], ResolvedPresence | None]


def _safe_time(value: Any) -> time | None:
    try:
        return normalize_time(value)
    except (TypeError, ValueError):
        return None


def build_presence_sources(
    *,
    overrides: Iterable[PresenceOverride] = (),
    absences: Iterable[Absence] = (),
    rotations: Iterable[TeamRotation] = (),
    blockages: Iterable[HourlyBlockage] = (),
) -> PresenceSources:
    override_map: dict[tuple[int, date], PresenceOverride] = {}
    for override in overrides:
        override_map.setdefault((override.person_id, to_day_date(override.day_date)), override)

    absence_map: dict[int, list[Absence]] = defaultdict(list)
    for absence in absences:
        if absence.status != AbsenceStatus.APPROVED:
            continue
        absence_map[absence.person_id].append(absence)

    rotation_map: dict[int, TeamRotation] = {}
    for rotation in rotations:
        if rotation.team_id is None:
            continue
        rotation_map.setdefault(rotation.team_id, rotation)

    blockage_map: dict[int, list[HourlyBlockage]] = defaultdict(list)
    for blockage in blockages:
        blockage_map[blockage.person_id].append(blockage)

    return PresenceSources(
        overrides=override_map,
        absences_by_person=dict(absence_map),
        rotations_by_team=rotation_map,
        blockages_by_person=dict(blockage_map),
    )


def _absence_window_for_day(absence: Absence, day_date: date) -> TimeWindow | None:
    start_date = to_day_date(absence.start_date)
    end_date = to_day_date(absence.end_date)
    if not (start_date <= day_date <= end_date):
        return None
    start = _safe_time(absence.start_time) if day_date == start_date else None
    end = _safe_time(absence.end_time) if day_date == end_date else None
    return TimeWindow(start=start or DAY_START, end=end or DAY_END)


def _boundary_time_unreadable(value: Any) -> bool:
    if value is None or (isinstance(value, str) and not value.strip()):
        return False
    return _safe_time(value) is None


def _absence_covers_full_day(absence: Absence, day_date: date) -> bool:
    window = _absence_window_for_day(absence, day_date)
    if window is None or not window.is_full_day:
        return False
    # A boundary time that cannot be read is a partial day, not an open end.
    if day_date == to_day_date(absence.start_date) and _boundary_time_unreadable(absence.start_time):
        return False
    if day_date == to_day_date(absence.end_date) and _boundary_time_unreadable(absence.end_time):
        return False
    return True


def manual_override_rule(person: Person, day_date: date, sources: PresenceSources) -> ResolvedPresence | None:
    override = sources.overrides.get((person.id, day_date))
    if override is None:
        return None
    start = _safe_time(override.start_time) or DAY_START
    end = _safe_time(override.end_time)
    # An end of 00:00 is how the editors store "until end of day".
    if end is None or end == DAY_START:
        end = DAY_END
    status = override.status.value if isinstance(override.status, PresenceStatus) else str(override.status)
    return ResolvedPresence(status=status, window=TimeWindow(start=start, end=end), source=SOURCE_OVERRIDE)


def full_day_absence_rule(person: Person, day_date: date, sources: PresenceSources) -> ResolvedPresence | None:
    for absence in sources.absences_by_person.get(person.id, []):
        if _absence_covers_full_day(absence, day_date):
            return ResolvedPresence(
                status=PresenceStatus.HOME.value,
                window=TimeWindow.full_day(),
                source=SOURCE_ABSENCE,
            )
    return None


def rotation_rule(person: Person, day_date: date, sources: PresenceSources) -> ResolvedPresence | None:
    if person.team_id is None:
        return None
    rotation = sources.rotations_by_team.get(person.team_id)
    if rotation is None or not rotation_covers_day(rotation, day_date):
        return None
    phase = resolve_rotation_phase(day_date, rotation)
    if phase is None:
        return None
    status = PresenceStatus.BASE.value if phase == RotationPhase.FULL else phase.value
    return ResolvedPresence(status=status, window=rotation_window(phase, rotation), source=SOURCE_ROTATION)


def default_presence() -> ResolvedPresence:
    return ResolvedPresence(
        status=PresenceStatus.BASE.value,
        window=TimeWindow.full_day(),
        source=SOURCE_DEFAULT,
    )


PRESENCE_RULES: tuple[PresenceRule, ...] = (
    manual_override_rule,
    full_day_absence_rule,
    rotation_rule,
)


def collect_unavailable_blocks(person: Person, day_date: date, sources: PresenceSources) -> tuple[UnavailableBlock, ...]:
    """Partial-day absences and hourly blockages for the day, earliest first."""
    blocks: list[UnavailableBlock] = []
    for absence in sources.absences_by_person.get(person.id, []):
        window = _absence_window_for_day(absence, day_date)
        if window is None or _absence_covers_full_day(absence, day_date):
            continue
        blocks.append(
            UnavailableBlock(start=window.start, end=window.end, kind=BLOCK_KIND_ABSENCE, reason=absence.reason)
        )

    for blockage in sources.blockages_by_person.get(person.id, []):
        if to_day_date(blockage.day_date) != day_date:
            continue
        start = _safe_time(blockage.start_time)
        end = _safe_time(blockage.end_time)
        if start is None or end is None:
            continue
        blocks.append(UnavailableBlock(start=start, end=end, kind=BLOCK_KIND_HOURLY, reason=blockage.reason))

    blocks.sort(key=lambda item: (item.start, item.end))
    return tuple(blocks)


def resolve_presence_from_sources(
    person: Person,
    day_date: date,
    sources: PresenceSources,
    *,
    rules: Sequence[PresenceRule] = PRESENCE_RULES,
) -> ResolvedPresence:
    resolved: ResolvedPresence | None = None
    for rule in rules:
        resolved = rule(person, day_date, sources)
        if resolved is not None:
            break
    if resolved is None:
        resolved = default_presence()

    blocks = collect_unavailable_blocks(person, day_date, sources)
    if blocks:
        resolved = replace(resolved, unavailable_blocks=blocks)
    return resolved


def resolve_presence(
    person: Person,
    day_date: date,
    *,
    overrides: Iterable[PresenceOverride] = (),
    absences: Iterable[Absence] = (),
    rotations: Iterable[TeamRotation] = (),
    blockages: Iterable[HourlyBlockage] = (),
) -> ResolvedPresence:
    sources = build_presence_sources(
        overrides=overrides,
        absences=absences,
        rotations=rotations,
        blockages=blockages,
    )
    return resolve_presence_from_sources(person, to_day_date(day_date), sources)
