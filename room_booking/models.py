from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

ROLE_ADMIN = "ADMIN"
ROLE_USER = "USER"
ROLES = (ROLE_ADMIN, ROLE_USER)


def _to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _parse_instant(value: Any) -> datetime:
    if isinstance(value, datetime):
        return _to_utc(value)
    return _to_utc(datetime.fromisoformat(str(value)))


def _optional_str(value: Any) -> str | None:
    return str(value) if value is not None else None


@dataclass(frozen=True)
class Room:
    room_id: str
    name: str
    capacity: int
    building: str
    location: str | None = None
    category: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "room_id": self.room_id,
            "name": self.name,
            "capacity": self.capacity,
            "building": self.building,
            "location": self.location,
            "category": self.category,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "Room":
        return Room(
            room_id=str(data["room_id"]),
            name=str(data["name"]),
            capacity=int(data.get("capacity", 0)),
            building=str(data.get("building", "")),
            location=_optional_str(data.get("location")),
            category=_optional_str(data.get("category")),
        )


@dataclass(frozen=True)
class UserAccount:
    user_id: str
    name: str
    email: str | None = None
    role: str = ROLE_USER

    def __post_init__(self) -> None:
        if self.role not in ROLES:
            raise ValueError(f"Unknown role: {self.role}")

    def to_dict(self) -> dict[str, Any]:
        return {"user_id": self.user_id, "name": self.name, "email": self.email, "role": self.role}

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "UserAccount":
        return UserAccount(
            user_id=str(data["user_id"]),
            name=str(data.get("name", "")),
            email=_optional_str(data.get("email")),
            role=str(data.get("role", ROLE_USER)),
        )


@dataclass(frozen=True)
class Actor:
    id: str | None = None
    role: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    def can_manage(self, owner_id: str) -> bool:
        if not self.id:
            return False
        return self.id == owner_id or self.is_admin


@dataclass(frozen=True)
class ReservationRecord:
    reservation_id: str
    room_id: str
    user_id: str
    date: datetime
    start_time: datetime
    end_time: datetime
    title: str
    objective: str
    participant_group: str
    created_at: datetime
    updated_at: datetime
    note: str | None = None

    def __post_init__(self) -> None:
        if self.start_time >= self.end_time:
            raise ValueError("Reservation start time must be earlier than end time.")

    def to_dict(self) -> dict[str, Any]:
        payload = {
            "reservation_id": self.reservation_id,
            "room_id": self.room_id,
            "user_id": self.user_id,
            "date": self.date.isoformat(timespec="seconds"),
            "start_time": self.start_time.isoformat(timespec="seconds"),
            "end_time": self.end_time.isoformat(timespec="seconds"),
            "title": self.title,
            "objective": self.objective,
            "participant_group": self.participant_group,
            "created_at": self.created_at.isoformat(timespec="seconds"),
            "updated_at": self.updated_at.isoformat(timespec="seconds"),
        }
        if self.note is not None:
            payload["note"] = self.note
        return payload

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "ReservationRecord":
        return ReservationRecord(
            reservation_id=str(data["reservation_id"]),
            room_id=str(data["room_id"]),
            user_id=str(data["user_id"]),
            date=_parse_instant(data["date"]),
            start_time=_parse_instant(data["start_time"]),
            end_time=_parse_instant(data["end_time"]),
            title=str(data["title"]),
            objective=str(data.get("objective", "")),
            participant_group=str(data.get("participant_group", "")),
            created_at=_parse_instant(data["created_at"]),
            updated_at=_parse_instant(data["updated_at"]),
            note=_optional_str(data.get("note")),
        )


@dataclass(frozen=True)
class ReservationDetails:
    """A reservation joined with its room and owner."""

    reservation: ReservationRecord
    room: Room | None
    owner: UserAccount | None

    @property
    def reservation_id(self) -> str:
        return self.reservation.reservation_id

    @property
    def start_time(self) -> datetime:
        return self.reservation.start_time

    @property
    def end_time(self) -> datetime:
        return self.reservation.end_time

    def to_dict(self) -> dict[str, Any]:
        record = self.reservation
        room = self.room
        owner = self.owner
        created_by = "Unknown author"
        if owner is not None:
            created_by = owner.name or owner.email or created_by
        return {
            "id": record.reservation_id,
            "room_id": record.room_id,
            "room_name": room.name if room else record.room_id,
            "room_building": room.building if room else None,
            "room_category": room.category if room else None,
            "room_location": room.location if room else None,
            "room_capacity": room.capacity if room else None,
            "user_id": record.user_id,
            "title": record.title,
            "objective": record.objective,
            "participant_group": record.participant_group,
            "note": record.note,
            "date": record.date.isoformat(timespec="seconds"),
            "start_time": record.start_time.isoformat(timespec="seconds"),
            "end_time": record.end_time.isoformat(timespec="seconds"),
            "created_by": created_by,
        }
