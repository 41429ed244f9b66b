from __future__ import annotations

from datetime import date, datetime
from typing import Protocol
from zoneinfo import ZoneInfo

from .models import ReservationRecord
from .time_slots import combine_date_and_time


class ReservationExecutor(Protocol):
    def find_first_reservation(
        self,
        *,
        room_id: str,
        day: datetime,
        starts_before: datetime,
        ends_after: datetime,
        exclude_id: str | None = None,
    ) -> ReservationRecord | None: ...


def intervals_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Return True when two intervals overlap by even one minute.

    Intervals are treated as half-open ranges: [start, end)
    so touching boundaries (e.g. 10:00-11:00 and 11:00-12:00) do not overlap.
    """
    if a_start >= a_end:
        raise ValueError("a_start must be earlier than a_end.")
    if b_start >= b_end:
        raise ValueError("b_start must be earlier than b_end.")

    return a_start < b_end and b_start < a_end


def has_overlap(
    executor: ReservationExecutor,
    room_id: str,
    date_value: date | str,
    start: str,
    end: str,
    exclude_id: str | None = None,
    zone: str | ZoneInfo | None = None,
) -> bool:
    """Return True if any reservation of the room on that day intersects ``[start, end)``.

    ``executor`` must be the transaction that will perform the write, so the
    check and the write see the same committed state.
    """
    start_time = combine_date_and_time(date_value, start, zone)
    end_time = combine_date_and_time(date_value, end, zone)
    day = combine_date_and_time(date_value, "00:00", zone)

    conflict = executor.find_first_reservation(
        room_id=room_id,
        day=day,
        starts_before=end_time,
        ends_after=start_time,
        exclude_id=exclude_id,
    )
    return conflict is not None
