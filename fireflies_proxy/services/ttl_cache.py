from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from threading import Lock
from typing import Generic, TypeVar

T = TypeVar("T")

Clock = Callable[[], float]


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    value: T
    expires_at: float

    def is_fresh(self, now: float) -> bool:
        return now < self.expires_at


class TtlCache(Generic[T]):
    """Process-local response cache keyed by string.

    Expiry is checked on read; expired entries stay in place so that callers
    in a rate-limit backoff can still fall back to the last good value.
    """

    def __init__(self, ttl_seconds: float, clock: Clock = time.time) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, CacheEntry[T]] = {}
        self._lock = Lock()

    def get(self, key: str) -> T | None:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
        if entry is None or not entry.is_fresh(now):
            return None
        return entry.value

    def get_stale(self, key: str) -> T | None:
        with self._lock:
            entry = self._entries.get(key)
        if entry is None:
            return None
        return entry.value

    def put(self, key: str, value: T) -> None:
        entry = CacheEntry(value=value, expires_at=self._clock() + self.ttl_seconds)
        with self._lock:
            self._entries[key] = entry


class BackoffWindow:
    """Single process-wide "resume after" instant, in epoch seconds."""

    def __init__(self, clock: Clock = time.time) -> None:
        self._clock = clock
        self._resume_at = 0.0
        self._lock = Lock()

    @property
    def resume_at(self) -> float:
        with self._lock:
            return self._resume_at

    def is_active(self) -> bool:
        return self._clock() < self.resume_at

    def remaining_seconds(self) -> float:
        return max(self.resume_at - self._clock(), 0.0)

    def enter_until(self, resume_at: float) -> None:
        with self._lock:
            self._resume_at = resume_at

    def clear(self) -> None:
        with self._lock:
            self._resume_at = 0.0
