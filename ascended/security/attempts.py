"""
Failed authentication attempt tracking.

Attempts are keyed by ``"{client_ip}:{user_agent}"``. After ``max_attempts``
failures inside the window, further attempts are refused until the window
measured from the last failure has elapsed.

The limiter is built once at startup and injected into the authentication
strategy. ``InMemoryAuthAttemptStore`` is single-process state; a shared store
can be plugged in through the ``AuthAttemptStore`` protocol.
"""

from __future__ import annotations

import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from cachetools import TTLCache

from ascended.config import AUTH_ATTEMPT_MAX_KEYS, AUTH_ATTEMPT_WINDOW_SECONDS, MAX_AUTH_ATTEMPTS
from ascended.observability.logging import get_logger
from ascended.observability.telemetry import counter

logger = get_logger(__name__)

Clock = Callable[[], float]


@dataclass
class AttemptRecord:
    count: int
    last_attempt: float


class AuthAttemptStore(Protocol):
    def get(self, key: str) -> AttemptRecord | None: ...

    def set(self, key: str, record: AttemptRecord) -> None: ...

    def delete(self, key: str) -> None: ...


class InMemoryAuthAttemptStore:
    """TTLCache-backed store. Entries expire one window after their last write."""

    def __init__(
        self,
        window_seconds: int = AUTH_ATTEMPT_WINDOW_SECONDS,
        max_keys: int = AUTH_ATTEMPT_MAX_KEYS,
        clock: Clock = time.time,
    ) -> None:
        self._records: TTLCache[str, AttemptRecord] = TTLCache(
            maxsize=max_keys, ttl=window_seconds, timer=clock
        )

    def get(self, key: str) -> AttemptRecord | None:
        return self._records.get(key)

    def set(self, key: str, record: AttemptRecord) -> None:
        self._records[key] = record

    def delete(self, key: str) -> None:
        self._records.pop(key, None)

    def __len__(self) -> int:
        return len(self._records)


def attempt_key(client_ip: str, user_agent: str | None) -> str:
    return f"{client_ip}:{user_agent or ''}"


class AuthAttemptLimiter:
    def __init__(
        self,
        store: AuthAttemptStore,
        max_attempts: int = MAX_AUTH_ATTEMPTS,
        window_seconds: int = AUTH_ATTEMPT_WINDOW_SECONDS,
        clock: Clock = time.time,
    ) -> None:
        self.store = store
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self.clock = clock

    def check(self, key: str) -> int | None:
        """
        Return seconds until the caller may retry, or None when not blocked.

        Side Effects:
            - Deletes the record once its window has elapsed
        """
        record = self.store.get(key)
        if record is None:
            return None

        elapsed = self.clock() - record.last_attempt
        if elapsed >= self.window_seconds:
            self.store.delete(key)
            return None

        if record.count >= self.max_attempts:
            counter("auth.attempts.blocked")
            return max(1, math.ceil(self.window_seconds - elapsed))
        return None

    def record_failure(self, key: str) -> int:
        """
        Count one failed attempt and return the running total.

        Side Effects:
            - Writes the attempt record to the store
        """
        now = self.clock()
        record = self.store.get(key)
        if record is None or now - record.last_attempt > self.window_seconds:
            record = AttemptRecord(count=1, last_attempt=now)
        else:
            record = AttemptRecord(count=record.count + 1, last_attempt=now)
        self.store.set(key, record)

        if record.count >= self.max_attempts:
            logger.warning("Failed authentication threshold reached (%d attempts)", record.count)
        return record.count

    def reset(self, key: str) -> None:
        self.store.delete(key)
