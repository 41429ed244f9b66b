"""Shape and business-rule validation of reservation requests.

Structural rules check each field on its own. Semantic rules (ordering,
weekend, opening hours, alignment) run as soon as the date and both times
parse, whatever the state of the free-text fields, and every violation is
collected. Callers that need a single message use the first issue.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Mapping

from .errors import EmptyAfterSanitization, InvalidPayload, InvalidTimeFormat, ValidationIssue
from .settings import Settings, get_settings
from .time_slots import (
    combine_date_and_time,
    is_aligned_to_step,
    is_weekend,
    local_date,
    opening_bounds,
    split_hhmm,
    today_in_zone,
)

TEXT_MAX_LENGTH = 80
NOTE_MAX_LENGTH = 280

INVALID_ROOM = "InvalidRoom"
INVALID_DATE = "InvalidDate"
INVALID_TIME = "InvalidTime"
INVALID_TITLE = "InvalidTitle"
INVALID_OBJECTIVE = "InvalidObjective"
INVALID_GROUP = "InvalidParticipantGroup"
INVALID_NOTE = "InvalidNote"
INVALID_ORDER = "InvalidOrder"
WEEKEND_NOT_ALLOWED = "WeekendNotAllowed"
OUTSIDE_OPENING_HOURS = "OutsideOpeningHours"
MISALIGNED_SLOT = "MisalignedSlot"

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_LINE_BREAKS_RE = re.compile(r"[\r\n]+")
_WHITESPACE_RE = re.compile(r"\s+")

MESSAGES = {
    INVALID_ROOM: "Room is required.",
    INVALID_DATE: "Invalid date.",
    INVALID_TIME: "Invalid time (expected HH:MM).",
    INVALID_ORDER: "End time must be later than start time.",
    WEEKEND_NOT_ALLOWED: "Reservations are not allowed on weekends.",
    "title_required": "Title is required.",
    "title_too_long": f"Title cannot exceed {TEXT_MAX_LENGTH} characters.",
    "objective_required": "Objective is required.",
    "objective_too_long": f"Objective cannot exceed {TEXT_MAX_LENGTH} characters.",
    "group_required": "Participant group is required.",
    "group_too_long": f"Participant group cannot exceed {TEXT_MAX_LENGTH} characters.",
    "note_too_long": f"Note cannot exceed {NOTE_MAX_LENGTH} characters.",
}


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def _pick(data: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return None


@dataclass(frozen=True)
class ReservationInput:
    room_id: str
    date: str
    start: str
    end: str
    objective: str
    participant_group: str
    title: str
    note: str | None = None

    @staticmethod
    def from_mapping(data: Mapping[str, Any]) -> "ReservationInput":
        note = _pick(data, "note")
        return ReservationInput(
            room_id=_text(_pick(data, "room_id", "roomId")),
            date=_text(_pick(data, "date")),
            start=_text(_pick(data, "start")),
            end=_text(_pick(data, "end")),
            objective=_text(_pick(data, "objective")),
            participant_group=_text(_pick(data, "participant_group", "participantGroup")),
            title=_text(_pick(data, "title")),
            note=None if note is None else str(note),
        )


@dataclass(frozen=True)
class SanitizedReservation:
    room_id: str
    date: str
    start: str
    end: str
    objective: str
    participant_group: str
    title: str
    note: str | None = None


@dataclass(frozen=True)
class ValidationResult:
    data: ReservationInput
    issues: tuple[ValidationIssue, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return not self.issues

    @property
    def first_message(self) -> str | None:
        return self.issues[0].message if self.issues else None


def _check_text(
    issues: list[ValidationIssue],
    value: str,
    field_name: str,
    code: str,
    required_key: str,
    too_long_key: str,
) -> None:
    trimmed = value.strip()
    if not trimmed:
        issues.append(ValidationIssue(code, field_name, MESSAGES[required_key]))
    elif len(trimmed) > TEXT_MAX_LENGTH:
        issues.append(ValidationIssue(code, field_name, MESSAGES[too_long_key]))


def _parse_day(value: str) -> date | None:
    if not _DATE_RE.match(value):
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


def _valid_time(value: str) -> bool:
    try:
        split_hhmm(value)
    except InvalidTimeFormat:
        return False
    return True


def _semantic_issues(
    day: date,
    start_text: str,
    end_text: str,
    settings: Settings,
    today: date,
) -> list[ValidationIssue]:
    zone = settings.zone
    start_time = combine_date_and_time(day, start_text, zone)
    end_time = combine_date_and_time(day, end_text, zone)
    issues: list[ValidationIssue] = []

    if not start_time < end_time:
        issues.append(ValidationIssue(INVALID_ORDER, "end", MESSAGES[INVALID_ORDER]))

    if is_weekend(start_time, zone) and local_date(start_time, zone) != today:
        issues.append(ValidationIssue(WEEKEND_NOT_ALLOWED, "date", MESSAGES[WEEKEND_NOT_ALLOWED]))

    opening_start, opening_end = opening_bounds(day, zone, settings)
    outside_message = (
        f"Times must be between {settings.opening_start} and {settings.opening_end}."
    )
    for field_name, instant in (("start", start_time), ("end", end_time)):
        if instant < opening_start or instant > opening_end:
            issues.append(ValidationIssue(OUTSIDE_OPENING_HOURS, field_name, outside_message))

    step = settings.slot_duration_minutes
    misaligned_message = f"Times must be multiples of {step} minutes."
    for field_name, instant in (("start", start_time), ("end", end_time)):
        if not is_aligned_to_step(instant, step, zone):
            issues.append(ValidationIssue(MISALIGNED_SLOT, field_name, misaligned_message))

    return issues


def validate_reservation_input(
    payload: ReservationInput | Mapping[str, Any],
    *,
    settings: Settings | None = None,
    today: date | None = None,
    now: datetime | None = None,
) -> ValidationResult:
    """Run every structural and semantic rule and collect the violations."""
    settings = settings or get_settings()
    data = payload if isinstance(payload, ReservationInput) else ReservationInput.from_mapping(payload)
    issues: list[ValidationIssue] = []

    room_id = data.room_id.strip()
    if not room_id:
        issues.append(ValidationIssue(INVALID_ROOM, "room_id", MESSAGES[INVALID_ROOM]))

    day = _parse_day(data.date.strip())
    if day is None:
        issues.append(ValidationIssue(INVALID_DATE, "date", MESSAGES[INVALID_DATE]))

    start_text = data.start.strip()
    end_text = data.end.strip()
    times_ok = True
    for field_name, value in (("start", start_text), ("end", end_text)):
        if not _valid_time(value):
            times_ok = False
            issues.append(ValidationIssue(INVALID_TIME, field_name, MESSAGES[INVALID_TIME]))

    _check_text(issues, data.objective, "objective", INVALID_OBJECTIVE, "objective_required", "objective_too_long")
    _check_text(issues, data.participant_group, "participant_group", INVALID_GROUP, "group_required", "group_too_long")
    _check_text(issues, data.title, "title", INVALID_TITLE, "title_required", "title_too_long")
    if data.note is not None and len(data.note.strip()) > NOTE_MAX_LENGTH:
        issues.append(ValidationIssue(INVALID_NOTE, "note", MESSAGES["note_too_long"]))

    if day is not None and times_ok:
        effective_today = today or today_in_zone(settings.zone, now)
        issues.extend(_semantic_issues(day, start_text, end_text, settings, effective_today))

    return ValidationResult(data=data, issues=tuple(issues))


def parse_reservation_input(
    payload: ReservationInput | Mapping[str, Any],
    *,
    settings: Settings | None = None,
    today: date | None = None,
    now: datetime | None = None,
) -> ReservationInput:
    result = validate_reservation_input(payload, settings=settings, today=today, now=now)
    if not result.ok:
        raise InvalidPayload(result.first_message or "Reservation data is invalid.", result.issues)
    return result.data


def sanitize_text(value: str) -> str:
    return _WHITESPACE_RE.sub(" ", _LINE_BREAKS_RE.sub(" ", value)).strip()


def sanitize_reservation_input(data: ReservationInput) -> SanitizedReservation:
    title = sanitize_text(data.title)
    if not title:
        raise EmptyAfterSanitization("title", "Title cannot be empty.")

    note = None
    if data.note is not None:
        note = sanitize_text(data.note) or None

    objective = sanitize_text(data.objective)
    if not objective:
        raise EmptyAfterSanitization("objective", MESSAGES["objective_required"])

    participant_group = sanitize_text(data.participant_group)
    if not participant_group:
        raise EmptyAfterSanitization("participant_group", MESSAGES["group_required"])

    return SanitizedReservation(
        room_id=data.room_id.strip(),
        date=data.date.strip(),
        start=data.start.strip(),
        end=data.end.strip(),
        objective=objective,
        participant_group=participant_group,
        title=title,
        note=note,
    )
