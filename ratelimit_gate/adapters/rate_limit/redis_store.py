"""Redis-backed window counter store.

INCR and the conditional PEXPIRE run inside one Lua script, so concurrent
workers never lose an increment and a window can't be left without expiry.
"""

from __future__ import annotations

import asyncio
import logging

from redis.asyncio import Redis
from redis.exceptions import RedisError

from ratelimit_gate.adapters.rate_limit.base import AbstractCounterStore, WindowCount
from ratelimit_gate.core.errors import StoreUnavailableAppError

logger = logging.getLogger(__name__)


# KEYS[1] = counter key, ARGV[1] = window length in milliseconds.
# A key without TTL (PTTL == -1) is a new window or a leftover from a plain
# INCR; either way it gets the window expiry.
INCR_WITH_EXPIRE_LUA = """
local count = redis.call('INCR', KEYS[1])
local ttl = redis.call('PTTL', KEYS[1])
if ttl < 0 then
    redis.call('PEXPIRE', KEYS[1], ARGV[1])
    ttl = tonumber(ARGV[1])
end
return {count, ttl}
"""


class RedisCounterStore(AbstractCounterStore):
    """Counter store backed by a shared Redis instance."""

    name = "redis"

    def __init__(self, client: Redis, *, timeout_seconds: float = 0.5) -> None:
        """Initialize the store.

        Args:
            client: redis-py asyncio client.
            timeout_seconds: Upper bound for one script round trip.

        Raises:
            ValueError: If timeout_seconds is invalid.
        """
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")

        self._client = client
        self._timeout_seconds = timeout_seconds
        self._script = client.register_script(INCR_WITH_EXPIRE_LUA)

    @classmethod
    def from_url(cls, url: str, *, timeout_seconds: float = 0.5) -> "RedisCounterStore":
        """Create a store with its own connection pool."""
        client = Redis.from_url(
            url,
            socket_timeout=timeout_seconds,
            socket_connect_timeout=timeout_seconds,
        )
        return cls(client, timeout_seconds=timeout_seconds)

    def _unavailable(self, reason: str) -> StoreUnavailableAppError:
        return StoreUnavailableAppError(
            code="store_unavailable",
            message="Rate limit store is unavailable",
            details={
                "store": self.name,
                "timeout_seconds": self._timeout_seconds,
                "hint": reason,
            },
        )

    async def incr_with_expire(self, key: str, ttl_ms: int) -> WindowCount:
        if not key:
            raise ValueError("key must be a non-empty string")
        if ttl_ms < 1:
            raise ValueError("ttl_ms must be >= 1")

        try:
            count, ttl = await asyncio.wait_for(
                self._script(keys=[key], args=[ttl_ms]),
                timeout=self._timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            logger.error(
                "store.timeout",
                extra={"store": self.name, "timeout_s": self._timeout_seconds},
            )
            raise self._unavailable("timeout") from exc
        except (RedisError, OSError) as exc:
            logger.error(
                "store.error",
                extra={"store": self.name, "error_type": type(exc).__name__},
            )
            raise self._unavailable(type(exc).__name__) from exc

        return WindowCount(count=int(count), ttl_ms=max(0, int(ttl)))

    async def close(self) -> None:
        await self._client.aclose()
