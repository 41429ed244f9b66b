import tempfile
import unittest
from datetime import datetime, timezone
from pathlib import Path

from room_booking import ReservationYamlRepository
from room_booking.audit import AuditLogger, mask_emails, redact
from room_booking.request_ip import FALLBACK_IP, client_ip, client_ip_from_headers


class TestRedaction(unittest.TestCase):
    def test_masks_emails_in_nested_values(self) -> None:
        masked = mask_emails({"note": "ask ada@example.org", "items": ["bob@school.ci", 3]})

        self.assertEqual(masked, {"note": "ask ***@***", "items": ["***@***", 3]})

    def test_censors_sensitive_keys(self) -> None:
        cleaned = redact({"email": "ada@example.org", "nested": {"Token": "abc", "label": "ok"}, "count": 2})

        self.assertEqual(cleaned, {"email": "[redacted]", "nested": {"Token": "[redacted]", "label": "ok"}, "count": 2})


class TestAuditLogger(unittest.TestCase):
    def test_emit_writes_redacted_event(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = ReservationYamlRepository(Path(temp_dir) / "data", lock_timeout=1)
            audit = AuditLogger(repo)
            when = datetime(2025, 1, 10, 9, 0, tzinfo=timezone.utc)

            with self.assertLogs("room_booking.audit", level="INFO") as captured:
                event = audit.emit("reservations.create", "r1", "owner", "10.0.0.1", when, comment="by ada@example.org")

            self.assertEqual(event["comment"], "by ***@***")
            self.assertIn("reservations.create reservation=r1 actor=owner ip=10.0.0.1", captured.output[0])

            stored = repo.get_events()
            self.assertEqual(stored[-1]["event_type"], "RESERVATION_CREATED")
            self.assertEqual(stored[-1]["event_time"], "2025-01-10T09:00:00+00:00")
            self.assertEqual(stored[-1]["payload"]["comment"], "by ***@***")

    def test_emit_without_repository_only_logs(self) -> None:
        with self.assertLogs("room_booking.audit", level="INFO"):
            event = AuditLogger().emit("reservations.delete", "r1", "admin", FALLBACK_IP)

        self.assertEqual(event["action"], "reservations.delete")


class TestClientIp(unittest.TestCase):
    def test_prefers_first_forwarded_address(self) -> None:
        headers = {"X-Forwarded-For": "203.0.113.7, 10.0.0.1", "X-Real-Ip": "10.0.0.2"}

        self.assertEqual(client_ip_from_headers(headers), "203.0.113.7")

    def test_falls_back_to_real_ip_and_strips_mapping_prefix(self) -> None:
        self.assertEqual(client_ip_from_headers({"X-Real-Ip": "::ffff:192.0.2.4"}), "192.0.2.4")

    def test_uses_remote_address_when_headers_are_missing(self) -> None:
        self.assertEqual(client_ip({}, "198.51.100.3"), "198.51.100.3")
        self.assertEqual(client_ip(None, None), FALLBACK_IP)


if __name__ == "__main__":
    unittest.main()
