"""Create, update and delete reservations as single units of work.

Each operation follows the same path: rate limit, validation, sanitization,
actor resolution, then one store transaction that re-checks overlaps against
committed state and performs the write. Audit events are emitted once the
transaction has committed.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Mapping
from uuid import uuid4

from .audit import AuditLogger
from .conflict import has_overlap
from .errors import (
    Forbidden,
    InvalidPayload,
    NotFound,
    ReservationStorageError,
    SlotConflict,
    TooManyRequests,
    Unauthenticated,
)
from .models import Actor, ReservationDetails, ReservationRecord
from .rate_limit import RateLimiter
from .request_ip import FALLBACK_IP
from .settings import Settings, get_settings
from .time_slots import combine_date_and_time, today_in_zone
from .validation import ReservationInput, SanitizedReservation, parse_reservation_input, sanitize_reservation_input
from .yaml_store import ReservationTransaction, ReservationYamlRepository

logger = logging.getLogger(__name__)

ActorResolver = Callable[[str | None], Actor | None]

MESSAGES = {
    "conflict": "This slot is already booked for this room.",
    "not_found": "Reservation not found.",
    "forbidden": "Action not allowed.",
    "invalid_session": "Invalid session, please sign in again.",
    "unknown_room": "Unknown room.",
    "rate_limited": "Too many reservation requests were made. Please wait before trying again.",
}


def user_directory_resolver(repository: ReservationYamlRepository) -> ActorResolver:
    """Resolve an explicit user id against the user directory."""

    def resolve(explicit_user_id: str | None) -> Actor | None:
        if not explicit_user_id:
            return None
        user = repository.get_user(explicit_user_id)
        if user is None:
            return None
        return Actor(id=user.user_id, role=user.role)

    return resolve


class ReservationService:
    def __init__(
        self,
        repository: ReservationYamlRepository,
        *,
        settings: Settings | None = None,
        rate_limiter: RateLimiter | None = None,
        audit_logger: AuditLogger | None = None,
        actor_resolver: ActorResolver | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.repository = repository
        self.settings = settings or get_settings()
        self.rate_limiter = rate_limiter or RateLimiter()
        self.audit_logger = audit_logger or AuditLogger(repository)
        self._resolve_actor = actor_resolver or user_directory_resolver(repository)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _enforce_rate_limit(self, ip_address: str, action: str) -> None:
        try:
            self.rate_limiter.enforce(
                f"reservations:{ip_address}",
                self.settings.reservation_rate_limit,
                self.settings.reservation_rate_window_seconds,
                MESSAGES["rate_limited"],
            )
        except TooManyRequests:
            logger.warning("Reservation rate limit reached ip=%s action=%s", ip_address, action)
            raise

    def _validated(self, payload: ReservationInput | Mapping[str, Any]) -> SanitizedReservation:
        today = today_in_zone(self.settings.zone, self._clock())
        data = parse_reservation_input(payload, settings=self.settings, today=today)
        return sanitize_reservation_input(data)

    def _require_actor(self, user_id: str | None) -> Actor:
        actor = self._resolve_actor(user_id)
        if actor is None or not actor.id:
            raise Unauthenticated(MESSAGES["invalid_session"])
        return actor

    def _stored_dates(self, data: SanitizedReservation) -> tuple[datetime, datetime, datetime]:
        zone = self.settings.zone
        return (
            combine_date_and_time(data.date, "00:00", zone),
            combine_date_and_time(data.date, data.start, zone),
            combine_date_and_time(data.date, data.end, zone),
        )

    def _audit(self, action: str, reservation_id: str, actor_id: str, ip_address: str) -> None:
        # Runs after commit: failures are logged, never raised.
        try:
            self.audit_logger.emit(action, reservation_id, actor_id, ip_address)
        except (ReservationStorageError, OSError):
            logger.exception("Could not record audit event %s for reservation %s", action, reservation_id)

    def _check_slot(self, tx: ReservationTransaction, data: SanitizedReservation, exclude_id: str | None) -> None:
        if tx.get_room(data.room_id) is None:
            raise InvalidPayload(MESSAGES["unknown_room"])
        if has_overlap(tx, data.room_id, data.date, data.start, data.end, exclude_id, self.settings.zone):
            raise SlotConflict(MESSAGES["conflict"])

    def create_reservation(
        self,
        payload: ReservationInput | Mapping[str, Any],
        *,
        ip_address: str = FALLBACK_IP,
        user_id: str | None = None,
    ) -> ReservationDetails:
        self._enforce_rate_limit(ip_address, "reservations.create")
        data = self._validated(payload)
        actor = self._require_actor(user_id)

        def create(tx: ReservationTransaction) -> ReservationDetails:
            self._check_slot(tx, data, exclude_id=None)
            day, start_time, end_time = self._stored_dates(data)
            now = self._clock()
            record = ReservationRecord(
                reservation_id=str(uuid4()),
                room_id=data.room_id,
                user_id=actor.id,
                date=day,
                start_time=start_time,
                end_time=end_time,
                title=data.title,
                objective=data.objective,
                participant_group=data.participant_group,
                note=data.note,
                created_at=now,
                updated_at=now,
            )
            tx.insert_reservation(record)
            return tx.describe(record)

        created = self.repository.run_in_transaction(create)
        self._audit("reservations.create", created.reservation_id, actor.id, ip_address)
        return created

    def update_reservation(
        self,
        reservation_id: str,
        payload: ReservationInput | Mapping[str, Any],
        *,
        ip_address: str = FALLBACK_IP,
        user_id: str | None = None,
    ) -> ReservationDetails:
        self._enforce_rate_limit(ip_address, "reservations.update")
        data = self._validated(payload)
        actor = self._require_actor(user_id)

        def update(tx: ReservationTransaction) -> ReservationDetails:
            existing = tx.find_reservation(reservation_id)
            if existing is None:
                raise NotFound(MESSAGES["not_found"])
            if not actor.can_manage(existing.user_id):
                raise Forbidden(MESSAGES["forbidden"])

            self._check_slot(tx, data, exclude_id=reservation_id)
            day, start_time, end_time = self._stored_dates(data)
            record = ReservationRecord(
                reservation_id=existing.reservation_id,
                room_id=data.room_id,
                user_id=existing.user_id,
                date=day,
                start_time=start_time,
                end_time=end_time,
                title=data.title,
                objective=data.objective,
                participant_group=data.participant_group,
                note=data.note,
                created_at=existing.created_at,
                updated_at=self._clock(),
            )
            tx.update_reservation(record)
            return tx.describe(record)

        updated = self.repository.run_in_transaction(update)
        self._audit("reservations.update", updated.reservation_id, actor.id, ip_address)
        return updated

    def delete_reservation(
        self,
        reservation_id: str,
        *,
        ip_address: str = FALLBACK_IP,
        user_id: str | None = None,
    ) -> str:
        self._enforce_rate_limit(ip_address, "reservations.delete")
        actor = self._require_actor(user_id)

        def delete(tx: ReservationTransaction) -> str:
            existing = tx.find_reservation(reservation_id)
            if existing is None:
                raise NotFound(MESSAGES["not_found"])
            if not actor.can_manage(existing.user_id):
                raise Forbidden(MESSAGES["forbidden"])
            return tx.delete_reservation(reservation_id).reservation_id

        removed_id = self.repository.run_in_transaction(delete)
        self._audit("reservations.delete", removed_id, actor.id, ip_address)
        return removed_id
