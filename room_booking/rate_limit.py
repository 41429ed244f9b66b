from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable

from .errors import TooManyRequests

DEFAULT_MESSAGE = "Too many requests were detected. Please wait before trying again."


@dataclass
class _WindowEntry:
    count: int
    expires_at: float


@dataclass(frozen=True)
class RateLimitResult:
    success: bool
    remaining: int
    reset_at: float


class RateLimiter:
    """Fixed-window counter per key, kept in process memory."""

    def __init__(self, clock: Callable[[], float] | None = None) -> None:
        self._clock = clock or time.time
        self._entries: dict[str, _WindowEntry] = {}
        self._lock = threading.Lock()

    def consume(self, key: str, limit: int, window_seconds: float) -> RateLimitResult:
        if limit <= 0 or window_seconds <= 0:
            raise ValueError("limit and window_seconds must be greater than zero")

        now = self._clock()
        with self._lock:
            self._prune(now)
            entry = self._entries.get(key)
            if entry is None or entry.expires_at <= now:
                expires_at = now + window_seconds
                self._entries[key] = _WindowEntry(count=1, expires_at=expires_at)
                return RateLimitResult(success=True, remaining=limit - 1, reset_at=expires_at)

            if entry.count >= limit:
                return RateLimitResult(success=False, remaining=0, reset_at=entry.expires_at)

            entry.count += 1
            return RateLimitResult(success=True, remaining=max(0, limit - entry.count), reset_at=entry.expires_at)

    def _prune(self, now: float) -> None:
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            del self._entries[key]

    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._entries)

    def enforce(self, key: str, limit: int, window_seconds: float, message: str = DEFAULT_MESSAGE) -> RateLimitResult:
        result = self.consume(key, limit, window_seconds)
        if not result.success:
            retry_after = max(1, math.ceil(result.reset_at - self._clock()))
            raise TooManyRequests(message, reset_at=result.reset_at, retry_after=retry_after)
        return result

    def reset(self, key: str | None = None) -> None:
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)
