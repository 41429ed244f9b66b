"""Display helpers for a room-day schedule."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Generic, Protocol, Sequence, TypeVar

PRIORITY_OBJECTIVES = frozenset({"cours", "examen"})


class Timed(Protocol):
    @property
    def start_time(self) -> datetime: ...

    @property
    def end_time(self) -> datetime: ...


TimedT = TypeVar("TimedT", bound=Timed)


@dataclass(frozen=True)
class LaneAssignment(Generic[TimedT]):
    reservation: TimedT
    lane: int
    lane_count: int


@dataclass
class _Active:
    lane: int
    end: datetime
    index: int


def assign_lanes(reservations: Sequence[TimedT]) -> list[LaneAssignment[TimedT]]:
    """Place overlapping reservations side by side using greedy interval colouring.

    Results keep the input order. ``lane_count`` is the largest number of
    reservations that were active together while this one was active.
    """
    lanes = [0] * len(reservations)
    lane_counts = [1] * len(reservations)
    ordered = sorted(range(len(reservations)), key=lambda index: reservations[index].start_time)

    active: list[_Active] = []
    for index in ordered:
        current = reservations[index]
        active = [item for item in active if item.end > current.start_time]

        used = {item.lane for item in active}
        lane = 0
        while lane in used:
            lane += 1

        lanes[index] = lane
        active.append(_Active(lane=lane, end=current.end_time, index=index))

        for item in active:
            lane_counts[item.index] = max(lane_counts[item.index], len(active))

    return [
        LaneAssignment(reservation=reservation, lane=lanes[index], lane_count=lane_counts[index])
        for index, reservation in enumerate(reservations)
    ]


def display_title(title: str, objective: str | None = None, participant_group: str | None = None) -> str:
    objective = (objective or "").strip()
    group = (participant_group or "").strip()
    title = title.strip()

    if objective and objective.lower() in PRIORITY_OBJECTIVES:
        return f"{objective} - {group}" if group else objective
    if title:
        return title
    if objective:
        return objective
    return "Reservation"


def secondary_label(objective: str | None = None, participant_group: str | None = None) -> str | None:
    objective = (objective or "").strip()
    group = (participant_group or "").strip()
    if objective and group:
        return f"{objective} - {group}"
    return objective or group or None
