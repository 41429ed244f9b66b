from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence


@dataclass(frozen=True)
class ValidationIssue:
    code: str
    field: str
    message: str


class InvalidTimeFormat(ValueError):
    def __init__(self, value: str) -> None:
        super().__init__(f"Invalid time: {value}")
        self.value = value


class InvalidStep(ValueError):
    def __init__(self, step_minutes: int) -> None:
        super().__init__("Slot step must be strictly positive.")
        self.step_minutes = step_minutes


class ReservationStorageError(RuntimeError):
    pass


class TransactionTimeoutError(ReservationStorageError):
    """The store could not start a transaction in time; the caller may retry."""


class ReservationError(Exception):
    """Base class for failures surfaced to callers of the booking service."""

    code = "reservation_error"
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidPayload(ReservationError, ValueError):
    code = "invalid_payload"
    status_code = 400

    def __init__(self, message: str, issues: Sequence[ValidationIssue] = ()) -> None:
        super().__init__(message)
        self.issues = tuple(issues)


class EmptyAfterSanitization(ReservationError, ValueError):
    code = "empty_after_sanitization"
    status_code = 400

    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field


class SlotConflict(ReservationError):
    code = "slot_conflict"
    status_code = 409


class Unauthenticated(ReservationError):
    code = "unauthenticated"
    status_code = 401


class Forbidden(ReservationError):
    code = "forbidden"
    status_code = 403


class NotFound(ReservationError):
    code = "not_found"
    status_code = 404


class TooManyRequests(ReservationError):
    code = "too_many_requests"
    status_code = 429

    def __init__(self, message: str, reset_at: float, retry_after: int) -> None:
        super().__init__(message)
        self.reset_at = reset_at
        self.retry_after = retry_after
