from __future__ import annotations

import logging
import shutil
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator, TypeVar
from uuid import uuid4

import yaml
from filelock import FileLock, Timeout

from .conflict import intervals_overlap
from .errors import ReservationStorageError, TransactionTimeoutError
from .models import ROLE_USER, ReservationDetails, ReservationRecord, Room, UserAccount
from .rooms import DEFAULT_ROOMS, derive_room_category, sort_rooms_by_display_order
from .settings import get_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ReservationTransaction:
    """Working copy of the reservation table for one unit of work.

    Changes stay in memory until the owning repository commits them; nothing
    is written when the block raises.
    """

    def __init__(self, repository: "ReservationYamlRepository", rows: list[dict[str, Any]]) -> None:
        self._repository = repository
        self._rows = rows
        self.dirty = False

    @property
    def rows(self) -> list[dict[str, Any]]:
        return self._rows

    def _index_of(self, reservation_id: str) -> int:
        for index, row in enumerate(self._rows):
            if str(row.get("reservation_id")) == reservation_id:
                return index
        return -1

    def find_reservation(self, reservation_id: str) -> ReservationRecord | None:
        index = self._index_of(reservation_id)
        if index < 0:
            return None
        return ReservationRecord.from_dict(self._rows[index])

    def find_first_reservation(
        self,
        *,
        room_id: str,
        day: datetime,
        starts_before: datetime,
        ends_after: datetime,
        exclude_id: str | None = None,
    ) -> ReservationRecord | None:
        for row in self._rows:
            if str(row.get("room_id")) != room_id:
                continue
            record = ReservationRecord.from_dict(row)
            if exclude_id is not None and record.reservation_id == exclude_id:
                continue
            if record.date != day:
                continue
            if intervals_overlap(record.start_time, record.end_time, ends_after, starts_before):
                return record
        return None

    def get_room(self, room_id: str) -> Room | None:
        return self._repository.get_room(room_id)

    def insert_reservation(self, record: ReservationRecord) -> ReservationRecord:
        if self._index_of(record.reservation_id) >= 0:
            raise ReservationStorageError(f"Duplicate reservation id: {record.reservation_id}")
        self._rows.append(record.to_dict())
        self.dirty = True
        return record

    def update_reservation(self, record: ReservationRecord) -> ReservationRecord:
        index = self._index_of(record.reservation_id)
        if index < 0:
            raise ReservationStorageError(f"Reservation not found: {record.reservation_id}")
        self._rows[index] = record.to_dict()
        self.dirty = True
        return record

    def delete_reservation(self, reservation_id: str) -> ReservationRecord:
        index = self._index_of(reservation_id)
        if index < 0:
            raise ReservationStorageError(f"Reservation not found: {reservation_id}")
        removed = ReservationRecord.from_dict(self._rows.pop(index))
        self.dirty = True
        return removed

    def describe(self, record: ReservationRecord) -> ReservationDetails:
        return self._repository.describe(record)


class ReservationYamlRepository:
    def __init__(self, base_dir: str | Path = "data", lock_timeout: float | None = None) -> None:
        self.base_dir = Path(base_dir)
        self.rooms_file = self.base_dir / "rooms.yaml"
        self.users_file = self.base_dir / "users.yaml"
        self.reservations_file = self.base_dir / "reservations.yaml"
        self.log_file = self.base_dir / "reservation_events.yaml"
        self.lock_file = self.base_dir / "reservations.yaml.lock"
        self.lock_timeout = lock_timeout if lock_timeout is not None else get_settings().lock_timeout_seconds
        self._transaction_lock = threading.Lock()
        self._directory_lock = threading.Lock()
        self._log_lock = threading.RLock()
        self._ensure_files()
        self._file_lock = FileLock(str(self.lock_file))

    def _ensure_files(self) -> None:
        self.base_dir.mkdir(parents=True, exist_ok=True)
        for path in (self.rooms_file, self.users_file, self.reservations_file, self.log_file):
            if not path.exists():
                path.write_text("[]\n", encoding="utf-8")

    def _read_yaml_list(self, path: Path, recover: bool = True) -> list[dict[str, Any]]:
        try:
            payload = yaml.safe_load(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            path.write_text("[]\n", encoding="utf-8")
            return []
        except (OSError, UnicodeDecodeError, yaml.YAMLError) as error:
            if not recover:
                raise ReservationStorageError(f"Unreadable YAML file: {path}") from error
            self._recover_corrupted_yaml(path, error)
            return []

        if payload is None:
            return []
        if not isinstance(payload, list):
            if not recover:
                raise ReservationStorageError(f"Top-level YAML is not a list: {path}")
            self._recover_corrupted_yaml(path, ValueError("top-level YAML is not a list"))
            return []

        sanitized: list[dict[str, Any]] = []
        for index, row in enumerate(payload):
            if isinstance(row, dict):
                sanitized.append(row)
            elif not recover:
                raise ReservationStorageError(f"Row {index} of {path} is not a mapping")
            elif path != self.log_file:
                self.log_event(
                    "YAML_ROW_SKIPPED",
                    {
                        "file": str(path.name),
                        "index": index,
                        "reason": "row is not a mapping",
                    },
                )
        return sanitized

    def _write_yaml_list(self, path: Path, rows: list[dict[str, Any]]) -> None:
        temp_path = path.with_name(f"{path.name}.{uuid4().hex}.tmp")
        try:
            temp_path.write_text(yaml.safe_dump(rows, allow_unicode=True, sort_keys=False), encoding="utf-8")
            temp_path.replace(path)
        except OSError as error:
            raise ReservationStorageError(f"Failed to write YAML file: {path}") from error
        finally:
            if temp_path.exists():
                temp_path.unlink(missing_ok=True)

    def _recover_corrupted_yaml(self, path: Path, error: Exception) -> None:
        timestamp = datetime.now().strftime("%Y%m%d%H%M%S")
        backup_path = path.with_name(f"{path.stem}.corrupt.{timestamp}{path.suffix}")
        try:
            if path.exists():
                shutil.copy2(path, backup_path)
        except OSError:
            logger.exception("Could not back up corrupted file %s", path)

        logger.warning("Recovered corrupted YAML file %s: %s", path.name, error)
        path.write_text("[]\n", encoding="utf-8")
        if path != self.log_file:
            self.log_event(
                "YAML_RECOVERED",
                {
                    "file": str(path.name),
                    "backup": str(backup_path.name),
                    "reason": str(error),
                },
            )

    def log_event(self, event_type: str, payload: dict[str, Any], event_time: datetime | None = None) -> None:
        timestamp = (event_time or datetime.now(timezone.utc)).isoformat(timespec="seconds")
        with self._log_lock:
            events = self._read_yaml_list(self.log_file)
            events.append({"event_time": timestamp, "event_type": event_type, "payload": payload})
            self._write_yaml_list(self.log_file, events)

    def get_events(self) -> list[dict[str, Any]]:
        return self._read_yaml_list(self.log_file)

    # Transactions

    @contextmanager
    def transaction(self) -> Iterator[ReservationTransaction]:
        """Serialize a read-check-write unit of work on the reservation table.

        Transactions are serialized by a thread lock and by a lock file shared
        with every other repository on the same directory, in or out of this
        process. The reservation file is replaced in one step on success.
        Waiting longer than ``lock_timeout`` raises
        :class:`TransactionTimeoutError`; an unreadable reservation file raises
        :class:`ReservationStorageError` and is left untouched.
        """
        if not self._transaction_lock.acquire(timeout=self.lock_timeout):
            raise TransactionTimeoutError("Timed out waiting for the reservation store; please retry.")
        try:
            try:
                self._file_lock.acquire(timeout=self.lock_timeout)
            except Timeout as error:
                raise TransactionTimeoutError("Timed out waiting for the reservation store; please retry.") from error
            try:
                tx = ReservationTransaction(self, self._read_yaml_list(self.reservations_file, recover=False))
                yield tx
                if tx.dirty:
                    self._write_yaml_list(self.reservations_file, tx.rows)
            finally:
                self._file_lock.release()
        finally:
            self._transaction_lock.release()

    def run_in_transaction(self, work: Callable[[ReservationTransaction], T]) -> T:
        with self.transaction() as tx:
            return work(tx)

    # Reservations

    def get_reservations(self) -> list[ReservationRecord]:
        rows = self._read_yaml_list(self.reservations_file)
        return [ReservationRecord.from_dict(row) for row in rows]

    def get_reservation(self, reservation_id: str) -> ReservationRecord | None:
        for record in self.get_reservations():
            if record.reservation_id == reservation_id:
                return record
        return None

    def list_reservations(
        self,
        start: datetime,
        end: datetime,
        room_id: str | None = None,
    ) -> list[ReservationDetails]:
        """Reservations whose day falls in ``[start, end)``, by day then start time."""
        rooms = {room.room_id: room for room in self.get_rooms()}
        users = {user.user_id: user for user in self.get_users()}
        selected = [
            record
            for record in self.get_reservations()
            if start <= record.date < end and (room_id is None or record.room_id == room_id)
        ]
        selected.sort(key=lambda record: (record.date, record.start_time))
        return [ReservationDetails(record, rooms.get(record.room_id), users.get(record.user_id)) for record in selected]

    def describe(self, record: ReservationRecord) -> ReservationDetails:
        return ReservationDetails(record, self.get_room(record.room_id), self.get_user(record.user_id))

    # Rooms

    def get_rooms(self) -> list[Room]:
        return [Room.from_dict(row) for row in self._read_yaml_list(self.rooms_file)]

    def get_room(self, room_id: str) -> Room | None:
        for room in self.get_rooms():
            if room.room_id == room_id:
                return room
        return None

    def add_room(
        self,
        name: str,
        capacity: int,
        building: str,
        location: str | None = None,
        category: str | None = None,
        room_id: str | None = None,
    ) -> Room:
        room = Room(
            room_id=room_id or str(uuid4()),
            name=name,
            capacity=capacity,
            building=building,
            location=location,
            category=category or derive_room_category(name, building, capacity),
        )
        with self._directory_lock:
            rows = self._read_yaml_list(self.rooms_file)
            rows = [row for row in rows if str(row.get("room_id")) != room.room_id]
            rows.append(room.to_dict())
            self._write_yaml_list(self.rooms_file, rows)
        return room

    def seed_rooms(
        self,
        definitions: Iterable[dict[str, Any]] = DEFAULT_ROOMS,
        overwrite: bool = False,
    ) -> list[Room]:
        """Install the room catalogue, keeping existing ids for rooms with the same name."""
        with self._directory_lock:
            existing = {} if overwrite else {room.name: room for room in self.get_rooms()}
            seeded: list[Room] = []
            for definition in definitions:
                name = str(definition["name"])
                building = str(definition["building"])
                capacity = int(definition["capacity"])
                location = definition.get("location")
                current = existing.get(name)
                seeded.append(
                    Room(
                        room_id=current.room_id if current else str(uuid4()),
                        name=name,
                        capacity=capacity,
                        building=building,
                        location=str(location) if location is not None else None,
                        category=derive_room_category(name, building, capacity),
                    )
                )
            seeded = sort_rooms_by_display_order(seeded)
            self._write_yaml_list(self.rooms_file, [room.to_dict() for room in seeded])

        self.log_event("ROOMS_SEEDED", {"count": len(seeded), "overwrite": overwrite})
        return seeded

    # Users

    def get_users(self) -> list[UserAccount]:
        return [UserAccount.from_dict(row) for row in self._read_yaml_list(self.users_file)]

    def get_user(self, user_id: str) -> UserAccount | None:
        for user in self.get_users():
            if user.user_id == user_id:
                return user
        return None

    def add_user(
        self,
        name: str,
        email: str | None = None,
        role: str = ROLE_USER,
        user_id: str | None = None,
    ) -> UserAccount:
        user = UserAccount(user_id=user_id or str(uuid4()), name=name, email=email, role=role)
        with self._directory_lock:
            rows = self._read_yaml_list(self.users_file)
            rows = [row for row in rows if str(row.get("user_id")) != user.user_id]
            rows.append(user.to_dict())
            self._write_yaml_list(self.users_file, rows)
        return user
