"""Window counter store adapters.

This package provides a small abstraction layer so the limiter can count
against a shared Redis instance in production and an in-memory store for a
single process or tests, without changing the counting algorithm.
"""

from ratelimit_gate.adapters.rate_limit.base import AbstractCounterStore, WindowCount
from ratelimit_gate.adapters.rate_limit.in_memory import InMemoryCounterStore
from ratelimit_gate.adapters.rate_limit.redis_store import RedisCounterStore

__all__ = [
    "AbstractCounterStore",
    "InMemoryCounterStore",
    "RedisCounterStore",
    "WindowCount",
]
