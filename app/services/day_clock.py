"""Calendar-day and time-of-day helpers.

The backing store keys days as ``YYYY-MM-DD`` and times of day as ``HH:MM``
strings. Inside the service everything is a ``date`` or a ``time``; conversion
happens only at the edges through the helpers below.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

DEFAULT_REPORT_TIMEZONE = "Asia/Jerusalem"
DAY_START = time(0, 0)
DAY_END = time(23, 59)


@dataclass(frozen=True, slots=True)
class TimeWindow:
    start: time
    end: time

    @classmethod
    def full_day(cls) -> TimeWindow:
        return cls(start=DAY_START, end=DAY_END)

    @property
    def is_full_day(self) -> bool:
        return self.start == DAY_START and self.end == DAY_END

    def as_strings(self) -> tuple[str, str]:
        return format_hhmm(self.start), format_hhmm(self.end)


def parse_hhmm(value: str) -> time:
    raw = (value or "").strip()
    parts = raw.split(":")
    if len(parts) < 2:
        raise ValueError(f"Invalid time of day: {value!r}")
    hour = int(parts[0])
    minute = int(parts[1])
    if hour < 0 or hour > 23 or minute < 0 or minute > 59:
        raise ValueError(f"Invalid time of day: {value!r}")
    return time(hour=hour, minute=minute)


def format_hhmm(value: time) -> str:
    return value.strftime("%H:%M")


def normalize_time(value: time | str | None) -> time | None:
    """Coerce to minute precision; ``None`` stays ``None``."""
    if value is None:
        return None
    if isinstance(value, str):
        if not value.strip():
            return None
        return parse_hhmm(value)
    return value.replace(second=0, microsecond=0, tzinfo=None)


def to_day_date(value: date | datetime | str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(value.strip()[:10])


@lru_cache
def report_timezone(name: str | None) -> ZoneInfo:
    normalized = (name or "").strip() or DEFAULT_REPORT_TIMEZONE
    try:
        return ZoneInfo(normalized)
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo(DEFAULT_REPORT_TIMEZONE)


def local_now(tz: ZoneInfo, reference: datetime | None = None) -> datetime:
    if reference is None:
        return datetime.now(tz)
    if reference.tzinfo is None:
        return reference.replace(tzinfo=tz)
    return reference.astimezone(tz)


def minutes_of_day(value: time) -> int:
    return value.hour * 60 + value.minute
