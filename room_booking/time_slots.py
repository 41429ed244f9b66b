"""Opening hours, slot generation and calendar predicates.

Every computation happens in the operating time zone; instants returned by this
module are timezone-aware UTC datetimes. Naive datetimes passed in are read as
UTC, the same way stored timestamps are.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from .errors import InvalidStep, InvalidTimeFormat
from .settings import Settings, get_settings

_HHMM_RE = re.compile(r"^\d{2}:\d{2}$")


@dataclass(frozen=True)
class TimeSlot:
    start: datetime
    end: datetime

    def to_dict(self, zone: str | ZoneInfo | None = None) -> dict[str, str]:
        return {
            "start": self.start.isoformat(timespec="minutes"),
            "end": self.end.isoformat(timespec="minutes"),
            "label": f"{to_hhmm(self.start, zone)}-{to_hhmm(self.end, zone)}",
        }


def resolve_zone(zone: str | ZoneInfo | None = None) -> ZoneInfo:
    if zone is None:
        return get_settings().zone
    if isinstance(zone, ZoneInfo):
        return zone
    return ZoneInfo(zone)


def _as_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def split_hhmm(value: str) -> tuple[int, int]:
    if not isinstance(value, str) or not _HHMM_RE.match(value):
        raise InvalidTimeFormat(str(value))
    hours, minutes = (int(part) for part in value.split(":"))
    if hours > 23 or minutes > 59:
        raise InvalidTimeFormat(value)
    return hours, minutes


def local_date(instant: datetime, zone: str | ZoneInfo | None = None) -> date:
    return _as_aware(instant).astimezone(resolve_zone(zone)).date()


def today_in_zone(zone: str | ZoneInfo | None = None, now: datetime | None = None) -> date:
    return local_date(now or datetime.now(timezone.utc), zone)


def combine_date_and_time(day: date | str, time_text: str, zone: str | ZoneInfo | None = None) -> datetime:
    """Return the instant of ``time_text`` on calendar day ``day`` in ``zone``."""
    if isinstance(day, str):
        day = date.fromisoformat(day)
    hours, minutes = split_hhmm(time_text)
    local = datetime(day.year, day.month, day.day, hours, minutes, tzinfo=resolve_zone(zone))
    return local.astimezone(timezone.utc)


def parse_time(
    time_text: str,
    zone: str | ZoneInfo | None = None,
    reference: datetime | None = None,
) -> datetime:
    """Interpret ``HH:MM`` as wall-clock time on the reference's day in ``zone``."""
    split_hhmm(time_text)
    reference_day = local_date(reference or datetime.now(timezone.utc), zone)
    return combine_date_and_time(reference_day, time_text, zone)


def to_hhmm(instant: datetime, zone: str | ZoneInfo | None = None) -> str:
    return _as_aware(instant).astimezone(resolve_zone(zone)).strftime("%H:%M")


def minutes_from_midnight(instant: datetime, zone: str | ZoneInfo | None = None) -> int:
    local = _as_aware(instant).astimezone(resolve_zone(zone))
    return local.hour * 60 + local.minute


def opening_bounds(
    reference: datetime | date,
    zone: str | ZoneInfo | None = None,
    settings: Settings | None = None,
) -> tuple[datetime, datetime]:
    settings = settings or get_settings()
    day = reference if not isinstance(reference, datetime) else local_date(reference, zone)
    return (
        combine_date_and_time(day, settings.opening_start, zone),
        combine_date_and_time(day, settings.opening_end, zone),
    )


def clamp_to_opening_hours(
    instant: datetime,
    zone: str | ZoneInfo | None = None,
    settings: Settings | None = None,
) -> datetime:
    opening_start, opening_end = opening_bounds(instant, zone, settings)
    instant = _as_aware(instant)
    if instant < opening_start:
        return opening_start
    if instant > opening_end:
        return opening_end
    return instant


def is_within_opening_hours(
    instant: datetime,
    zone: str | ZoneInfo | None = None,
    settings: Settings | None = None,
) -> bool:
    """Opening bounds are inclusive on both ends."""
    opening_start, opening_end = opening_bounds(instant, zone, settings)
    return opening_start <= _as_aware(instant) <= opening_end


def generate_slots(
    reference: datetime | date,
    step_minutes: int | None = None,
    zone: str | ZoneInfo | None = None,
    settings: Settings | None = None,
) -> list[TimeSlot]:
    """Walk the opening hours of the reference day in fixed steps.

    A trailing slot that would run past the closing time is dropped, so the
    result always holds ``floor(opening_duration / step_minutes)`` slots.
    """
    settings = settings or get_settings()
    if step_minutes is None:
        step_minutes = settings.slot_duration_minutes
    if step_minutes <= 0:
        raise InvalidStep(step_minutes)

    opening_start, opening_end = opening_bounds(reference, zone, settings)
    step = timedelta(minutes=step_minutes)
    slots: list[TimeSlot] = []
    cursor = opening_start
    while cursor + step <= opening_end:
        slots.append(TimeSlot(start=cursor, end=cursor + step))
        cursor += step
    return slots


def is_weekend(instant: datetime, zone: str | ZoneInfo | None = None) -> bool:
    return _as_aware(instant).astimezone(resolve_zone(zone)).isoweekday() in (6, 7)


def is_aligned_to_step(instant: datetime, step_minutes: int, zone: str | ZoneInfo | None = None) -> bool:
    if step_minutes <= 0:
        raise InvalidStep(step_minutes)
    return minutes_from_midnight(instant, zone) % step_minutes == 0
