"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
Environment defaults are set before any import that might load settings.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.pop("REDIS_URL", None)

from typing import Any, Callable

import pytest
from fastapi import HTTPException, Request
from fastapi.testclient import TestClient

from ratelimit_gate.adapters.rate_limit import AbstractCounterStore, InMemoryCounterStore
from ratelimit_gate.core.app_factory import create_app
from ratelimit_gate.core.config import LogSettings, RateLimitSettings, RedisSettings, Settings
from ratelimit_gate.core.policy import rate_limit


class FakeTime:
    """Deterministic clock shared by the store and the limiter."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.current = start

    def time(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


def make_settings(**ratelimit: Any) -> Settings:
    """Settings with an empty allowlist unless the test provides one."""
    ratelimit.setdefault("whitelist_ip_range", "")
    return Settings(
        log=LogSettings(level="WARNING"),
        redis=RedisSettings(url=None),
        ratelimit=RateLimitSettings(**ratelimit),
    )


def register_test_routes(app) -> None:
    @app.get("/items/{item_id}")
    async def read_item(item_id: int) -> dict:
        return {"item_id": item_id}

    @app.get("/login")
    @rate_limit(limit=1, duration="1m")
    async def login() -> dict:
        return {"ok": True}

    @app.get("/public")
    @rate_limit(limit=0, duration=1000)
    async def public() -> dict:
        return {"ok": True}

    @app.get("/missing")
    async def missing() -> dict:
        raise HTTPException(status_code=404, detail="Not here")

    @app.get("/state")
    async def state(request: Request) -> dict:
        context = request.state.rate_limit
        return {
            "state": context.state.value,
            "remaining": context.decision.remaining if context.decision else None,
        }


@pytest.fixture
def fake_time() -> FakeTime:
    return FakeTime()


@pytest.fixture
def build_client(fake_time: FakeTime) -> Callable[..., TestClient]:
    """Factory building a TestClient around a freshly configured app."""

    def _build(store: AbstractCounterStore | None = None, **ratelimit: Any) -> TestClient:
        app = create_app(
            make_settings(**ratelimit),
            store=store if store is not None else InMemoryCounterStore(clock=fake_time.time),
            clock=fake_time.time,
            configure_logs=False,
        )
        register_test_routes(app)
        return TestClient(app)

    return _build


@pytest.fixture
def settings_factory() -> Callable[..., Settings]:
    return make_settings
