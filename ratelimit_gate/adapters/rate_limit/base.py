"""Counter store interfaces.

The limiter depends on this abstraction (not the concrete implementation)
so the storage backend can be swapped (Redis, in-memory) without touching
the counting algorithm.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class WindowCount:
    """Result of one atomic increment against the store.

    Attributes:
        count: Value of the counter after the increment.
        ttl_ms: Milliseconds until the window expires.
    """

    count: int
    ttl_ms: int


class AbstractCounterStore(ABC):
    """Interface for shared window counter stores."""

    name: str = "abstract"

    @abstractmethod
    async def incr_with_expire(self, key: str, ttl_ms: int) -> WindowCount:
        """Atomically increment ``key`` and start its window if needed.

        The expiry is set only when the key has no TTL yet, so increments
        inside a live window never extend it.

        Args:
            key: Counter key (one fixed window).
            ttl_ms: Window length applied when the key is created.

        Returns:
            WindowCount with the new count and the remaining TTL.

        Raises:
            StoreUnavailableAppError: If the store cannot complete the call.
        """
        raise NotImplementedError

    async def close(self) -> None:
        """Release connections held by the store."""
        return None
