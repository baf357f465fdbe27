"""Tests for the fixed-window limiter core."""

import asyncio

import pytest

from ratelimit_gate.adapters.rate_limit import AbstractCounterStore, InMemoryCounterStore, WindowCount
from ratelimit_gate.core.errors import StoreUnavailableAppError
from ratelimit_gate.core.limiter import (
    FixedWindowRateLimiter,
    LimitConfig,
    RateDecision,
    build_identity_key,
)


class YieldingStore(AbstractCounterStore):
    """Atomic store that suspends before answering, like a network round trip."""

    def __init__(self, inner: AbstractCounterStore) -> None:
        self._inner = inner
        self.calls = 0

    async def incr_with_expire(self, key: str, ttl_ms: int) -> WindowCount:
        self.calls += 1
        await asyncio.sleep(0)
        result = await self._inner.incr_with_expire(key, ttl_ms)
        await asyncio.sleep(0)
        return result


class DownStore(AbstractCounterStore):
    async def incr_with_expire(self, key: str, ttl_ms: int) -> WindowCount:
        raise StoreUnavailableAppError(code="store_unavailable", message="down")


def _limiter(fake_time) -> FixedWindowRateLimiter:
    return FixedWindowRateLimiter(InMemoryCounterStore(clock=fake_time.time), clock=fake_time.time)


def test_nth_request_sees_limit_minus_n(fake_time) -> None:
    limiter = _limiter(fake_time)
    config = LimitConfig(limit=3, duration_ms=1000)

    remaining = [asyncio.run(limiter.evaluate("k", config)).remaining for _ in range(5)]

    assert remaining == [2, 1, 0, -1, -2]


def test_first_rejected_is_limit_plus_one(fake_time) -> None:
    limiter = _limiter(fake_time)
    config = LimitConfig(limit=2, duration_ms=1000)

    decisions = [asyncio.run(limiter.evaluate("k", config)) for _ in range(3)]

    assert [d.exceeded for d in decisions] == [False, False, True]
    assert all(d.total == 2 for d in decisions)


def test_reset_at_is_window_end_in_epoch_seconds(fake_time) -> None:
    limiter = _limiter(fake_time)
    config = LimitConfig(limit=5, duration_ms=60_000)

    first = asyncio.run(limiter.evaluate("k", config))
    fake_time.advance(10)
    second = asyncio.run(limiter.evaluate("k", config))

    assert first.reset_at == 1060
    assert second.reset_at == 1060
    assert second.retry_after_seconds == 50


def test_window_resets_after_duration(fake_time) -> None:
    limiter = _limiter(fake_time)
    config = LimitConfig(limit=1, duration_ms=1000)

    for _ in range(4):
        asyncio.run(limiter.evaluate("k", config))

    fake_time.advance(1.001)
    decision = asyncio.run(limiter.evaluate("k", config))

    assert decision.remaining == 0
    assert decision.exceeded is False


def test_concurrent_requests_are_counted_exactly_once(fake_time) -> None:
    store = YieldingStore(InMemoryCounterStore(clock=fake_time.time))
    limiter = FixedWindowRateLimiter(store, clock=fake_time.time)
    config = LimitConfig(limit=10, duration_ms=1000)
    extra = 7

    async def burst() -> list[RateDecision]:
        return await asyncio.gather(*(limiter.evaluate("k", config) for _ in range(config.limit + extra)))

    decisions = asyncio.run(burst())

    assert sum(not d.exceeded for d in decisions) == config.limit
    assert sum(d.exceeded for d in decisions) == extra
    assert sorted(d.remaining for d in decisions) == list(range(-extra, config.limit))
    assert store.calls == config.limit + extra


def test_store_failure_propagates() -> None:
    limiter = FixedWindowRateLimiter(DownStore())

    with pytest.raises(StoreUnavailableAppError):
        asyncio.run(limiter.evaluate("k", LimitConfig(limit=1, duration_ms=1000)))


@pytest.mark.parametrize(
    "key, config",
    [
        ("", LimitConfig(limit=1, duration_ms=1000)),
        ("k", LimitConfig(limit=0, duration_ms=1000)),
        ("k", LimitConfig(limit=-1, duration_ms=1000)),
        ("k", LimitConfig(limit=1, duration_ms=0)),
    ],
)
def test_invalid_evaluate_args(key: str, config: LimitConfig) -> None:
    limiter = FixedWindowRateLimiter(InMemoryCounterStore())

    with pytest.raises(ValueError):
        asyncio.run(limiter.evaluate(key, config))


def test_decision_headers() -> None:
    decision = RateDecision(total=2, remaining=-1, reset_at=1001, now=1000.0)

    assert decision.as_headers() == {
        "X-RateLimit-Limit": "2",
        "X-RateLimit-Remaining": "-1",
        "X-RateLimit-Reset": "1001",
    }


def test_identity_key_composition() -> None:
    assert build_identity_key("clhr", "10.0.0.1", "/items/{item_id}") == "clhr:10.0.0.1:/items/{item_id}"
