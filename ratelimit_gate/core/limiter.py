"""Fixed-window rate limiter over an atomic counter store.

Each identity key owns one counter per window. The first increment creates
the counter and starts its TTL; later increments inside the window leave the
TTL alone, so windows are fixed rather than sliding.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import Callable

from ratelimit_gate.adapters.rate_limit.base import AbstractCounterStore


@dataclass(frozen=True)
class LimitConfig:
    """Window definition: ``limit`` requests per ``duration_ms``.

    A ``limit`` of zero or less means the route is not limited.
    """

    limit: int
    duration_ms: int

    @property
    def unlimited(self) -> bool:
        return self.limit <= 0


@dataclass(frozen=True)
class RateDecision:
    """Quota state observed by one request.

    Attributes:
        total: Max requests per window.
        remaining: ``total`` minus the window count after this request.
            Negative once the caller went over the limit.
        reset_at: UNIX epoch seconds when the current window expires.
        now: UNIX time the decision was taken at.
    """

    total: int
    remaining: int
    reset_at: int
    now: float

    @property
    def exceeded(self) -> bool:
        return self.remaining < 0

    @property
    def retry_after_seconds(self) -> int:
        return max(0, int(math.ceil(self.reset_at - self.now)))

    def as_headers(self) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.total),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_at),
        }


def build_identity_key(namespace: str, client_ip: str, route_path: str) -> str:
    """Compose the counter key for one client on one route.

    Examples:
        >>> build_identity_key("clhr", "10.0.0.1", "/items/{item_id}")
        'clhr:10.0.0.1:/items/{item_id}'
    """
    return ":".join((namespace, client_ip, route_path))


class FixedWindowRateLimiter:
    """Derives rate decisions from one atomic store increment per request."""

    def __init__(
        self,
        store: AbstractCounterStore,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._clock = clock

    @property
    def store(self) -> AbstractCounterStore:
        return self._store

    async def evaluate(self, key: str, config: LimitConfig) -> RateDecision:
        """Count one request against ``key`` and report the quota.

        Args:
            key: Identity key of the window.
            config: Window definition; must be limited.

        Returns:
            RateDecision for this request. The caller admits it when
            ``decision.exceeded`` is False.

        Raises:
            ValueError: If key is empty or config is unlimited.
            StoreUnavailableAppError: If the store call fails or times out.
        """
        if not key:
            raise ValueError("key must be a non-empty string")
        if config.unlimited:
            raise ValueError("config.limit must be > 0")
        if config.duration_ms < 1:
            raise ValueError("config.duration_ms must be >= 1")

        window = await self._store.incr_with_expire(key, config.duration_ms)
        now = self._clock()
        reset_at = int(math.ceil(now + window.ttl_ms / 1000))

        return RateDecision(
            total=config.limit,
            remaining=config.limit - window.count,
            reset_at=reset_at,
            now=now,
        )
