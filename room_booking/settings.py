"""Runtime configuration for the booking engine.

Values are read once from the environment and cached for the lifetime of the
process; opening hours, slot granularity and the operating time zone are never
changed at runtime.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Mapping
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

DEFAULT_TIME_ZONE = "Africa/Abidjan"
DEFAULT_OPENING_START = "07:00"
DEFAULT_OPENING_END = "20:00"
DEFAULT_SLOT_DURATION_MINUTES = 30
DEFAULT_DATA_DIR = "data"

_HHMM_RE = re.compile(r"^(?:[01]\d|2[0-3]):[0-5]\d$")


@dataclass(frozen=True)
class Settings:
    timezone: str = DEFAULT_TIME_ZONE
    opening_start: str = DEFAULT_OPENING_START
    opening_end: str = DEFAULT_OPENING_END
    slot_duration_minutes: int = DEFAULT_SLOT_DURATION_MINUTES
    data_dir: str = DEFAULT_DATA_DIR
    lock_timeout_seconds: float = 5.0
    reservation_rate_limit: int = 30
    reservation_rate_window_seconds: int = 60
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        for label, value in (("opening_start", self.opening_start), ("opening_end", self.opening_end)):
            if not _HHMM_RE.match(value):
                raise ValueError(f"{label} must use the HH:MM format, got {value!r}")
        if self.opening_start >= self.opening_end:
            raise ValueError("opening_start must be earlier than opening_end")
        if self.slot_duration_minutes <= 0:
            raise ValueError("slot_duration_minutes must be greater than zero")
        if self.lock_timeout_seconds <= 0:
            raise ValueError("lock_timeout_seconds must be greater than zero")
        if self.reservation_rate_limit <= 0 or self.reservation_rate_window_seconds <= 0:
            raise ValueError("rate limit settings must be greater than zero")
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError) as error:
            raise ValueError(f"Unknown time zone: {self.timezone}") from error

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


def _read_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError as error:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from error


def _read_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw.strip())
    except ValueError as error:
        raise ValueError(f"{name} must be a number, got {raw!r}") from error


def load_settings(env: Mapping[str, str] | None = None) -> Settings:
    """Load configuration from the environment and fall back to defaults."""
    if env is None:
        env = os.environ

    return Settings(
        timezone=env.get("SCHOOL_TIMEZONE", DEFAULT_TIME_ZONE).strip() or DEFAULT_TIME_ZONE,
        opening_start=env.get("OPENING_HOURS_START", DEFAULT_OPENING_START).strip(),
        opening_end=env.get("OPENING_HOURS_END", DEFAULT_OPENING_END).strip(),
        slot_duration_minutes=_read_int(env, "SLOT_DURATION_MINUTES", DEFAULT_SLOT_DURATION_MINUTES),
        data_dir=env.get("ROOM_BOOKING_DATA_DIR", DEFAULT_DATA_DIR).strip() or DEFAULT_DATA_DIR,
        lock_timeout_seconds=_read_float(env, "ROOM_BOOKING_LOCK_TIMEOUT", 5.0),
        reservation_rate_limit=_read_int(env, "RESERVATION_RATE_LIMIT", 30),
        reservation_rate_window_seconds=_read_int(env, "RESERVATION_RATE_WINDOW", 60),
        log_level=env.get("LOG_LEVEL", "INFO").strip().upper() or "INFO",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings snapshot."""
    return load_settings()
