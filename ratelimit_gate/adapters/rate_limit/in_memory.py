"""In-memory window counter store.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: uses a lock around shared state.
"""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable

from ratelimit_gate.adapters.rate_limit.base import AbstractCounterStore, WindowCount


@dataclass
class _WindowState:
    count: int
    expires_at: float


class InMemoryCounterStore(AbstractCounterStore):
    """Counter store keeping fixed windows in a process-local dict.

    Important:
        This store is per-process only. If the API runs with multiple workers
        (e.g., multiple Uvicorn/Gunicorn workers), each worker will enforce its
        own independent limits. Configure REDIS_URL for shared counting.
    """

    name = "memory"

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.time,
        max_keys: int = 100_000,
    ) -> None:
        """Initialize the in-memory store.

        Args:
            clock: Time source function returning UNIX time in seconds.
            max_keys: Number of live keys after which expired windows are purged.

        Raises:
            ValueError: If max_keys is invalid.
        """
        if max_keys < 1:
            raise ValueError("max_keys must be >= 1")

        self._clock = clock
        self._max_keys = max_keys
        self._lock = threading.RLock()
        self._state_by_key: dict[str, _WindowState] = {}

    def _purge_expired(self, now: float) -> None:
        expired = [key for key, state in self._state_by_key.items() if state.expires_at <= now]
        for key in expired:
            del self._state_by_key[key]

    async def incr_with_expire(self, key: str, ttl_ms: int) -> WindowCount:
        """Increment the window counter for ``key``.

        Args:
            key: Counter key.
            ttl_ms: Window length in milliseconds, used only for a new window.

        Returns:
            WindowCount with the new count and remaining TTL.

        Raises:
            ValueError: If key is empty or ttl_ms is invalid.
        """
        if not key:
            raise ValueError("key must be a non-empty string")
        if ttl_ms < 1:
            raise ValueError("ttl_ms must be >= 1")

        now = self._clock()

        with self._lock:
            state = self._state_by_key.get(key)
            if state is None or state.expires_at <= now:
                if len(self._state_by_key) >= self._max_keys:
                    self._purge_expired(now)
                state = _WindowState(count=0, expires_at=now + ttl_ms / 1000)
                self._state_by_key[key] = state

            state.count += 1
            remaining_ms = max(0, int(math.ceil((state.expires_at - now) * 1000)))
            return WindowCount(count=state.count, ttl_ms=remaining_ms)

    def __len__(self) -> int:
        with self._lock:
            return len(self._state_by_key)
