import tempfile
import threading
import unittest
from datetime import datetime, timezone
from pathlib import Path
from unittest import mock

from room_booking import (
    ROLE_ADMIN,
    Forbidden,
    InvalidPayload,
    NotFound,
    ReservationService,
    ReservationStorageError,
    ReservationYamlRepository,
    Settings,
    SlotConflict,
    TooManyRequests,
    Unauthenticated,
)
from room_booking.rate_limit import RateLimiter

FIXED_NOW = datetime(2025, 1, 10, 8, 0, tzinfo=timezone.utc)


def build_payload(**overrides):
    payload = {
        "roomId": "room-1",
        "date": "2025-01-10",
        "start": "09:00",
        "end": "10:00",
        "objective": "Cours",
        "participantGroup": "L3 Info",
        "title": "Algorithmique",
        "note": None,
    }
    payload.update(overrides)
    return payload


class ServiceTestCase(unittest.TestCase):
    settings = Settings()

    def setUp(self) -> None:
        self._temp_dir = tempfile.TemporaryDirectory()
        self.repo = ReservationYamlRepository(Path(self._temp_dir.name) / "data", lock_timeout=2)
        self.repo.add_room("3 - Grande salle", 60, "Bâtiment C", location="Étage 1", room_id="room-1")
        self.repo.add_room("4 - Salle moyenne", 30, "Bâtiment C", room_id="room-2")
        self.repo.add_user("Owner", "owner@example.org", user_id="owner")
        self.repo.add_user("Someone else", "other@example.org", user_id="other")
        self.repo.add_user("Admin", "admin@example.org", role=ROLE_ADMIN, user_id="admin")
        self.service = self.make_service()

    def tearDown(self) -> None:
        self._temp_dir.cleanup()

    def make_service(self, **kwargs) -> ReservationService:
        kwargs.setdefault("settings", self.settings)
        kwargs.setdefault("clock", lambda: FIXED_NOW)
        return ReservationService(self.repo, **kwargs)

    def event_types(self) -> list[str]:
        return [event["event_type"] for event in self.repo.get_events()]


class TestCreateReservation(ServiceTestCase):
    def test_create_returns_joined_details(self) -> None:
        created = self.service.create_reservation(build_payload(), ip_address="10.0.0.1", user_id="owner")

        payload = created.to_dict()
        self.assertEqual(payload["room_name"], "3 - Grande salle")
        self.assertEqual(payload["room_building"], "Bâtiment C")
        self.assertEqual(payload["room_location"], "Étage 1")
        self.assertEqual(payload["created_by"], "Owner")
        self.assertEqual(payload["user_id"], "owner")
        self.assertEqual(payload["date"], "2025-01-10T00:00:00+00:00")
        self.assertEqual(payload["start_time"], "2025-01-10T09:00:00+00:00")
        self.assertEqual(payload["end_time"], "2025-01-10T10:00:00+00:00")
        self.assertIsNotNone(self.repo.get_reservation(created.reservation_id))

    def test_text_fields_are_sanitized_before_storage(self) -> None:
        created = self.service.create_reservation(
            build_payload(title="  Algo\r\n  avancée ", note="  \n "), user_id="owner"
        )

        stored = self.repo.get_reservation(created.reservation_id)
        self.assertEqual(stored.title, "Algo avancée")
        self.assertIsNone(stored.note)

    def test_overlapping_slot_is_rejected(self) -> None:
        self.service.create_reservation(build_payload(), user_id="owner")

        with self.assertRaises(SlotConflict) as context:
            self.service.create_reservation(build_payload(start="09:30", end="10:30"), user_id="other")

        self.assertEqual(context.exception.status_code, 409)
        self.assertEqual(len(self.repo.get_reservations()), 1)

    def test_touching_slots_are_allowed(self) -> None:
        self.service.create_reservation(build_payload(), user_id="owner")
        self.service.create_reservation(build_payload(start="10:00", end="10:30"), user_id="other")
        self.service.create_reservation(build_payload(start="08:30", end="09:00"), user_id="other")

        self.assertEqual(len(self.repo.get_reservations()), 3)

    def test_same_slot_in_another_room_is_allowed(self) -> None:
        self.service.create_reservation(build_payload(), user_id="owner")
        self.service.create_reservation(build_payload(roomId="room-2"), user_id="other")

        self.assertEqual(len(self.repo.get_reservations()), 2)

    def test_unknown_room_is_invalid(self) -> None:
        with self.assertRaises(InvalidPayload) as context:
            self.service.create_reservation(build_payload(roomId="missing"), user_id="owner")

        self.assertEqual(str(context.exception), "Unknown room.")

    def test_validation_errors_do_not_touch_the_store(self) -> None:
        with self.assertRaises(InvalidPayload):
            self.service.create_reservation(build_payload(start="10:00", end="09:00"), user_id="owner")

        self.assertEqual(self.repo.get_reservations(), [])

    def test_weekend_same_day_uses_the_clock(self) -> None:
        saturday_service = self.make_service(clock=lambda: datetime(2025, 1, 11, 8, 0, tzinfo=timezone.utc))

        created = saturday_service.create_reservation(build_payload(date="2025-01-11"), user_id="owner")
        self.assertEqual(created.to_dict()["date"], "2025-01-11T00:00:00+00:00")

        with self.assertRaises(InvalidPayload):
            self.service.create_reservation(build_payload(date="2025-01-11"), user_id="owner")

    def test_anonymous_caller_is_rejected(self) -> None:
        for user_id in (None, "", "ghost"):
            with self.subTest(user_id=user_id):
                with self.assertRaises(Unauthenticated):
                    self.service.create_reservation(build_payload(), user_id=user_id)

        self.assertEqual(self.repo.get_reservations(), [])

    def test_audit_event_is_recorded_without_emails(self) -> None:
        created = self.service.create_reservation(build_payload(), ip_address="10.0.0.1", user_id="owner")

        events = [event for event in self.repo.get_events() if event["event_type"] == "RESERVATION_CREATED"]
        self.assertEqual(len(events), 1)
        self.assertEqual(events[0]["payload"]["reservation_id"], created.reservation_id)
        self.assertEqual(events[0]["payload"]["actor_id"], "owner")
        self.assertEqual(events[0]["payload"]["ip_address"], "10.0.0.1")


class TestRateLimiting(ServiceTestCase):
    settings = Settings(reservation_rate_limit=2, reservation_rate_window_seconds=60)

    def test_rate_limit_applies_before_validation(self) -> None:
        service = self.make_service(rate_limiter=RateLimiter(clock=lambda: 1000.0))
        invalid = build_payload(start="bad")

        for _ in range(2):
            with self.assertRaises(InvalidPayload):
                service.create_reservation(invalid, ip_address="10.0.0.9", user_id="owner")

        with self.assertRaises(TooManyRequests) as context:
            service.create_reservation(invalid, ip_address="10.0.0.9", user_id="owner")

        self.assertEqual(context.exception.status_code, 429)
        self.assertEqual(context.exception.retry_after, 60)

    def test_limits_are_tracked_per_address(self) -> None:
        service = self.make_service(rate_limiter=RateLimiter(clock=lambda: 1000.0))

        service.create_reservation(build_payload(start="09:00", end="09:30"), ip_address="10.0.0.1", user_id="owner")
        service.create_reservation(build_payload(start="09:30", end="10:00"), ip_address="10.0.0.1", user_id="owner")
        service.create_reservation(build_payload(start="10:00", end="10:30"), ip_address="10.0.0.2", user_id="owner")

        with self.assertRaises(TooManyRequests):
            service.delete_reservation("anything", ip_address="10.0.0.1", user_id="owner")


class TestUpdateReservation(ServiceTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.existing = self.service.create_reservation(build_payload(), user_id="owner")

    def test_owner_can_move_reservation_over_its_own_slot(self) -> None:
        updated = self.service.update_reservation(
            self.existing.reservation_id, build_payload(start="09:30", end="10:30", title="Moved"), user_id="owner"
        )

        self.assertEqual(updated.reservation_id, self.existing.reservation_id)
        stored = self.repo.get_reservation(self.existing.reservation_id)
        self.assertEqual(stored.title, "Moved")
        self.assertEqual(stored.start_time, datetime(2025, 1, 10, 9, 30, tzinfo=timezone.utc))
        self.assertEqual(stored.created_at, self.existing.reservation.created_at)
        self.assertEqual(stored.user_id, "owner")

    def test_update_conflicting_with_another_reservation(self) -> None:
        self.service.create_reservation(build_payload(start="11:00", end="12:00"), user_id="other")

        with self.assertRaises(SlotConflict):
            self.service.update_reservation(
                self.existing.reservation_id, build_payload(start="10:30", end="11:30"), user_id="owner"
            )

        stored = self.repo.get_reservation(self.existing.reservation_id)
        self.assertEqual(stored.start_time, datetime(2025, 1, 10, 9, 0, tzinfo=timezone.utc))

    def test_non_owner_is_forbidden(self) -> None:
        with self.assertRaises(Forbidden):
            self.service.update_reservation(self.existing.reservation_id, build_payload(title="Hijack"), user_id="other")

    def test_admin_can_update_any_reservation(self) -> None:
        self.service.update_reservation(self.existing.reservation_id, build_payload(title="Admin edit"), user_id="admin")

        stored = self.repo.get_reservation(self.existing.reservation_id)
        self.assertEqual(stored.title, "Admin edit")
        self.assertEqual(stored.user_id, "owner")

    def test_missing_reservation_is_not_found(self) -> None:
        with self.assertRaises(NotFound):
            self.service.update_reservation("missing", build_payload(), user_id="owner")

    def test_update_is_audited(self) -> None:
        self.service.update_reservation(self.existing.reservation_id, build_payload(title="Again"), user_id="owner")

        self.assertIn("RESERVATION_UPDATED", self.event_types())


class TestDeleteReservation(ServiceTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.existing = self.service.create_reservation(build_payload(), user_id="owner")

    def test_owner_can_delete(self) -> None:
        removed_id = self.service.delete_reservation(self.existing.reservation_id, user_id="owner")

        self.assertEqual(removed_id, self.existing.reservation_id)
        self.assertIsNone(self.repo.get_reservation(removed_id))
        self.assertIn("RESERVATION_DELETED", self.event_types())

    def test_non_owner_is_forbidden(self) -> None:
        with self.assertRaises(Forbidden):
            self.service.delete_reservation(self.existing.reservation_id, user_id="other")

        self.assertIsNotNone(self.repo.get_reservation(self.existing.reservation_id))

    def test_admin_can_delete(self) -> None:
        self.service.delete_reservation(self.existing.reservation_id, user_id="admin")

        self.assertEqual(self.repo.get_reservations(), [])

    def test_missing_reservation_is_not_found(self) -> None:
        with self.assertRaises(NotFound):
            self.service.delete_reservation("missing", user_id="owner")

    def test_anonymous_delete_is_rejected(self) -> None:
        with self.assertRaises(Unauthenticated):
            self.service.delete_reservation(self.existing.reservation_id)


class TestConcurrentCreates(ServiceTestCase):
    def race(self, attempts) -> list[str]:
        barrier = threading.Barrier(len(attempts))
        outcomes: list[str] = []
        outcomes_lock = threading.Lock()

        def attempt(service: ReservationService, user_id: str, start: str, end: str) -> None:
            barrier.wait()
            try:
                service.create_reservation(build_payload(start=start, end=end), user_id=user_id)
                outcome = "created"
            except SlotConflict:
                outcome = "conflict"
            with outcomes_lock:
                outcomes.append(outcome)

        threads = [threading.Thread(target=attempt, args=args) for args in attempts]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)
        return sorted(outcomes)

    def test_only_one_of_two_overlapping_requests_wins(self) -> None:
        outcomes = self.race(
            [
                (self.service, "owner", "09:00", "10:00"),
                (self.service, "other", "09:30", "10:30"),
            ]
        )

        self.assertEqual(outcomes, ["conflict", "created"])
        self.assertEqual(len(self.repo.get_reservations()), 1)

    def test_only_one_of_two_identical_requests_wins(self) -> None:
        outcomes = self.race(
            [
                (self.service, "owner", "09:00", "10:00"),
                (self.service, "other", "09:00", "10:00"),
            ]
        )

        self.assertEqual(outcomes, ["conflict", "created"])
        self.assertEqual(len(self.repo.get_reservations()), 1)

    def test_separate_repositories_on_one_directory_do_not_double_book(self) -> None:
        web_side = self.make_service()
        mcp_side = ReservationService(
            ReservationYamlRepository(self.repo.base_dir, lock_timeout=2),
            settings=self.settings,
            clock=lambda: FIXED_NOW,
        )

        outcomes = self.race(
            [
                (web_side, "owner", "09:00", "10:00"),
                (mcp_side, "other", "09:00", "10:00"),
            ]
        )

        self.assertEqual(outcomes, ["conflict", "created"])
        self.assertEqual(len(self.repo.get_reservations()), 1)


class TestAuditFailures(ServiceTestCase):
    def test_committed_create_survives_an_audit_failure(self) -> None:
        with mock.patch.object(self.repo, "log_event", side_effect=ReservationStorageError("disk full")):
            with self.assertLogs("room_booking.actions", level="ERROR") as captured:
                created = self.service.create_reservation(build_payload(), user_id="owner")

        self.assertEqual(self.repo.get_reservation(created.reservation_id).reservation_id, created.reservation_id)
        self.assertIn("reservations.create", captured.output[0])

        with self.assertRaises(SlotConflict):
            self.service.create_reservation(build_payload(), user_id="other")

    def test_committed_delete_survives_an_audit_failure(self) -> None:
        created = self.service.create_reservation(build_payload(), user_id="owner")

        with mock.patch.object(self.repo, "log_event", side_effect=OSError("read-only file system")):
            with self.assertLogs("room_booking.actions", level="ERROR"):
                removed_id = self.service.delete_reservation(created.reservation_id, user_id="owner")

        self.assertEqual(removed_id, created.reservation_id)
        self.assertEqual(self.repo.get_reservations(), [])


if __name__ == "__main__":
    unittest.main()
