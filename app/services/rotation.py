from __future__ import annotations

import enum
from datetime import date, datetime

from app.models import TeamRotation
from app.services.day_clock import DAY_END, DAY_START, TimeWindow, normalize_time, to_day_date


class RotationPhase(str, enum.Enum):
    ARRIVAL = "arrival"
    FULL = "full"
    DEPARTURE = "departure"
    HOME = "home"


def _rotation_counts(rotation: TeamRotation) -> tuple[int, int] | None:
    days_on_base = rotation.days_on_base
    days_at_home = rotation.days_at_home
    if days_on_base is None or days_at_home is None:
        return None
    try:
        on_count = int(days_on_base)
        off_count = int(days_at_home)
    except (TypeError, ValueError):
        return None
    if on_count < 0 or off_count < 0 or on_count + off_count <= 0:
        return None
    return on_count, off_count


def resolve_rotation_phase(
    target_date: date | datetime | str,
    rotation: TeamRotation,
) -> RotationPhase | None:
    """Position of ``target_date`` inside the team's on/off cycle.

    ``None`` means the rotation has not started yet or is unusable.
    """
    counts = _rotation_counts(rotation)
    if counts is None or rotation.start_date is None:
        return None
    try:
        start_date = to_day_date(rotation.start_date)
    except ValueError:
        return None
    on_count, off_count = counts

    days_since_start = (to_day_date(target_date) - start_date).days
    if days_since_start < 0:
        return None

    day_in_cycle = days_since_start % (on_count + off_count)
    if day_in_cycle == 0:
        return RotationPhase.ARRIVAL
    if day_in_cycle < on_count - 1:
        return RotationPhase.FULL
    if day_in_cycle == on_count - 1:
        return RotationPhase.DEPARTURE
    return RotationPhase.HOME


def _configured_time(value, fallback):  # type: ignore[no-untyped-def]
    try:
        return normalize_time(value) or fallback
    except ValueError:
        return fallback


def rotation_window(phase: RotationPhase, rotation: TeamRotation) -> TimeWindow:
    if phase == RotationPhase.ARRIVAL:
        return TimeWindow(start=_configured_time(rotation.arrival_time, DAY_START), end=DAY_END)
    if phase == RotationPhase.DEPARTURE:
        return TimeWindow(start=DAY_START, end=_configured_time(rotation.departure_time, DAY_END))
    return TimeWindow.full_day()


def rotation_covers_day(rotation: TeamRotation, day_date: date) -> bool:
    if rotation.end_date is None:
        return True
    try:
        return day_date <= to_day_date(rotation.end_date)
    except ValueError:
        return True
