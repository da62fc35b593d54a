"""Webhook event-id deduplication cache."""

from __future__ import annotations

import threading
import time
from typing import Callable

DEFAULT_TTL_SECONDS = 3600


class DedupCache:
    """Remembers event ids for a fixed TTL.

    `add` is an atomic check-and-mark: it returns True the first time an id
    is seen within the TTL and False for every repeat.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._seen: dict[str, float] = {}

    def add(self, event_id: str) -> bool:
        now = self._clock()
        with self._lock:
            self._purge(now)
            expires = self._seen.get(event_id)
            if expires is not None and expires > now:
                return False
            self._seen[event_id] = now + self.ttl_seconds
            return True

    def seen(self, event_id: str) -> bool:
        now = self._clock()
        with self._lock:
            expires = self._seen.get(event_id)
            return expires is not None and expires > now

    def _purge(self, now: float) -> None:
        expired = [k for k, exp in self._seen.items() if exp <= now]
        for k in expired:
            del self._seen[k]

    def __len__(self) -> int:
        with self._lock:
            return len(self._seen)
