from __future__ import annotations

import re
from typing import Iterable, TypeVar

from .models import Room

_ORDER_PREFIX_RE = re.compile(r"^\s*(\d{1,3})\s*(?:[-–—]|[.:])")

RoomT = TypeVar("RoomT", bound=Room)

DEFAULT_ROOMS: list[dict[str, object]] = [
    {"name": "1 - Amphithéâtre", "building": "Amphithéâtre", "capacity": 150, "location": None},
    {"name": "2 - Petite salle (Ex-salle des profs)", "building": "Bâtiment C", "capacity": 20, "location": None},
    {"name": "3 - S1 grande salle 1er étage", "building": "Bâtiment C", "capacity": 60, "location": "1er étage"},
    {"name": "4 - S1 moyenne salle 2e étage", "building": "Bâtiment C", "capacity": 30, "location": "2e étage"},
    {"name": "5 - S1 petite salle 3e étage", "building": "Bâtiment C", "capacity": 20, "location": "3e étage"},
    {"name": "6 - Petite salle (ex-secretariat)", "building": "Bâtiment B", "capacity": 20, "location": None},
    {"name": "7 - S2 grande salle 1er étage", "building": "Bâtiment C", "capacity": 60, "location": "1er étage"},
    {"name": "8 - S2 moyenne salle 2e étage", "building": "Bâtiment C", "capacity": 30, "location": "2e étage"},
    {"name": "9 - S2 petite salle 3e étage", "building": "Bâtiment C", "capacity": 20, "location": "3e étage"},
    {"name": "10 - S2 petite salle (Ex-comptabilité)", "building": "Bâtiment B", "capacity": 20, "location": None},
    {"name": "11 - Petite salle (salle de reunion)", "building": "Bâtiment C", "capacity": 20, "location": None},
    {"name": "12 - Grande salle (rez-de-chaussée)", "building": "Bâtiment C", "capacity": 60, "location": "rez-de-chaussée"},
]


def derive_room_category(name: str, building: str, capacity: int) -> str:
    if "amphithéâtre" in name.strip().lower():
        return "amphithéâtre"
    if building == "Bâtiment C":
        if capacity >= 60:
            return "grande salle"
        if capacity == 30:
            return "salle moyenne"
    return "petite salle"


def _order_prefix(name: str) -> int | None:
    match = _ORDER_PREFIX_RE.match(name)
    if not match:
        return None
    return int(match.group(1))


def _natural_key(name: str) -> list[object]:
    parts = re.split(r"(\d+)", name.casefold())
    return [int(part) if part.isdigit() else part for part in parts]


def sort_rooms_by_display_order(rooms: Iterable[RoomT]) -> list[RoomT]:
    """Numbered rooms ("3 - ...") first by number, then the rest by natural name order."""

    def sort_key(room: Room) -> tuple[int, int, list[object]]:
        prefix = _order_prefix(room.name)
        if prefix is None:
            return (1, 0, _natural_key(room.name))
        return (0, prefix, _natural_key(room.name))

    return sorted(rooms, key=sort_key)
