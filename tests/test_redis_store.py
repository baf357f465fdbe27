"""Tests for the Redis counter store.

Error paths use a mocked client; counting and expiry run the Lua script on
fakeredis.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import fakeredis
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from ratelimit_gate.adapters.rate_limit.redis_store import INCR_WITH_EXPIRE_LUA, RedisCounterStore
from ratelimit_gate.core.errors import StoreUnavailableAppError
from ratelimit_gate.core.limiter import FixedWindowRateLimiter, LimitConfig


def _store(script, timeout_seconds: float = 0.5) -> tuple[RedisCounterStore, MagicMock]:
    client = MagicMock()
    client.register_script.return_value = script
    client.aclose = AsyncMock()
    return RedisCounterStore(client, timeout_seconds=timeout_seconds), client


def test_registers_incr_with_expire_script() -> None:
    store, client = _store(AsyncMock(return_value=[1, 1000]))

    client.register_script.assert_called_once_with(INCR_WITH_EXPIRE_LUA)
    assert store.name == "redis"


def test_script_counts_and_sets_expiry_once() -> None:
    async def scenario() -> None:
        client = fakeredis.FakeAsyncRedis()
        store = RedisCounterStore(client)
        key = "clhr:10.0.0.1:/items"

        first = await store.incr_with_expire(key, 1000)
        await asyncio.sleep(0.05)
        second = await store.incr_with_expire(key, 1000)
        third = await store.incr_with_expire(key, 1000)

        assert [first.count, second.count, third.count] == [1, 2, 3]
        assert first.ttl_ms == 1000
        # Later increments keep the window end; the TTL only goes down.
        assert third.ttl_ms <= second.ttl_ms < first.ttl_ms
        assert 0 < await client.pttl(key) <= third.ttl_ms

        await store.close()

    asyncio.run(scenario())


def test_script_starts_new_window_after_expiry() -> None:
    async def scenario() -> None:
        client = fakeredis.FakeAsyncRedis()
        store = RedisCounterStore(client)

        await store.incr_with_expire("k", 50)
        assert (await store.incr_with_expire("k", 50)).count == 2

        await asyncio.sleep(0.1)
        fresh = await store.incr_with_expire("k", 50)

        assert fresh.count == 1
        assert 0 < fresh.ttl_ms <= 50

        await store.close()

    asyncio.run(scenario())


def test_script_repairs_key_without_expiry() -> None:
    async def scenario() -> None:
        client = fakeredis.FakeAsyncRedis()
        store = RedisCounterStore(client)
        await client.set("k", 4)

        result = await store.incr_with_expire("k", 1000)

        assert result.count == 5
        assert 0 < await client.pttl("k") <= 1000

        await store.close()

    asyncio.run(scenario())


def test_limiter_over_redis_store() -> None:
    async def scenario() -> list[int]:
        store = RedisCounterStore(fakeredis.FakeAsyncRedis())
        limiter = FixedWindowRateLimiter(store)
        config = LimitConfig(limit=2, duration_ms=1000)

        decisions = [await limiter.evaluate("clhr:10.0.0.1:/login", config) for _ in range(3)]
        await store.close()
        return [decision.remaining for decision in decisions]

    assert asyncio.run(scenario()) == [1, 0, -1]


def test_returns_count_and_ttl() -> None:
    script = AsyncMock(return_value=[3, 420])
    store, _ = _store(script)

    result = asyncio.run(store.incr_with_expire("clhr:10.0.0.1:/items", 1000))

    assert result.count == 3
    assert result.ttl_ms == 420
    script.assert_awaited_once_with(keys=["clhr:10.0.0.1:/items"], args=[1000])


def test_negative_ttl_is_clamped() -> None:
    store, _ = _store(AsyncMock(return_value=[1, -2]))

    assert asyncio.run(store.incr_with_expire("k", 1000)).ttl_ms == 0


def test_redis_error_raises_store_unavailable() -> None:
    store, _ = _store(AsyncMock(side_effect=RedisConnectionError("connection refused")))

    with pytest.raises(StoreUnavailableAppError) as exc_info:
        asyncio.run(store.incr_with_expire("k", 1000))

    assert exc_info.value.code == "store_unavailable"
    assert exc_info.value.details["store"] == "redis"
    assert isinstance(exc_info.value.__cause__, RedisConnectionError)


def test_timeout_raises_store_unavailable() -> None:
    async def slow(**_: object) -> list[int]:
        await asyncio.sleep(1)
        return [1, 1000]

    store, _ = _store(slow, timeout_seconds=0.01)

    with pytest.raises(StoreUnavailableAppError) as exc_info:
        asyncio.run(store.incr_with_expire("k", 1000))

    assert exc_info.value.details["hint"] == "timeout"


def test_invalid_args() -> None:
    store, _ = _store(AsyncMock(return_value=[1, 1000]))

    with pytest.raises(ValueError):
        asyncio.run(store.incr_with_expire("", 1000))

    with pytest.raises(ValueError):
        asyncio.run(store.incr_with_expire("k", 0))

    with pytest.raises(ValueError):
        _store(AsyncMock(), timeout_seconds=0)


def test_close_releases_client() -> None:
    store, client = _store(AsyncMock(return_value=[1, 1000]))

    asyncio.run(store.close())

    client.aclose.assert_awaited_once()
