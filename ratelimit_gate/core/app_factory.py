from __future__ import annotations

"""Application factory for the rate limited FastAPI app.

Centralizes app construction (settings → policy, store, limiter, middleware,
handlers, routers) so tests can build independent apps with their own
configuration and store in the same process.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Callable

from fastapi import FastAPI

from ratelimit_gate.adapters.rate_limit import (
    AbstractCounterStore,
    InMemoryCounterStore,
    RedisCounterStore,
)
from ratelimit_gate.api.routes import health_router
from ratelimit_gate.core.config import RedisSettings, Settings, settings as default_settings
from ratelimit_gate.core.exception_handlers import setup_exception_handlers
from ratelimit_gate.core.interceptor import RateLimitInterceptor
from ratelimit_gate.core.limiter import FixedWindowRateLimiter
from ratelimit_gate.core.logging import configure_logging
from ratelimit_gate.core.middleware import build_request_id_middleware
from ratelimit_gate.core.policy import PolicyResolver, RateLimitPolicy

logger = logging.getLogger(__name__)


def build_store(redis_settings: RedisSettings) -> AbstractCounterStore:
    """Pick the counter store for the configured connection parameters."""
    if redis_settings.url:
        return RedisCounterStore.from_url(
            redis_settings.url,
            timeout_seconds=redis_settings.timeout_seconds,
        )

    logger.warning(
        "store.in_memory",
        extra={"reason": "redis_url_not_configured"},
    )
    return InMemoryCounterStore()


def create_app(
    app_settings: Settings | None = None,
    *,
    store: AbstractCounterStore | None = None,
    clock: Callable[[], float] | None = None,
    configure_logs: bool = True,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        app_settings: Settings to use; the process-wide settings by default.
        store: Counter store override (tests, custom backends).
        clock: Time source for the limiter; ``time.time`` by default.
        configure_logs: Install the root log handler.

    Returns:
        Configured FastAPI app with middleware, handlers and routers.

    Raises:
        InvalidConfigAppError: If the rate limit settings are malformed. The
            interceptor is never registered in that case.
    """
    cfg = app_settings or default_settings

    # Logging first so subsequent init logs are formatted as desired
    if configure_logs:
        configure_logging(cfg.log)

    policy = RateLimitPolicy.from_settings(cfg.ratelimit)
    counter_store = store if store is not None else build_store(cfg.redis)
    limiter = FixedWindowRateLimiter(counter_store, clock=clock or time.time)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        await counter_store.close()

    app = FastAPI(
        title="Rate Limit Gate",
        description=(
            "Fixed-window request rate limiting per client IP and route, "
            "backed by a shared counter store. Limited responses carry "
            "X-RateLimit-Limit, X-RateLimit-Remaining and X-RateLimit-Reset."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )

    interceptor = RateLimitInterceptor(
        PolicyResolver(policy),
        limiter,
        failure_policy=cfg.ratelimit.failure_policy,
        enabled=cfg.ratelimit.enabled,
    )
    app.state.rate_limit_policy = policy
    app.state.rate_limiter = limiter

    # Middleware: the last registered runs first, so request ids wrap the limiter.
    app.middleware("http")(interceptor)
    app.middleware("http")(build_request_id_middleware(cfg.log.request_id_header))

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(health_router)

    logger.info(
        "app.configured",
        extra={
            "store": counter_store.name,
            "namespace": policy.namespace,
            "global_limit": policy.global_config.limit,
            "global_window_ms": policy.global_config.duration_ms,
            "route_overrides": len(policy.route_limits),
            "allowlist_ranges": len(policy.allowlist),
            "failure_policy": cfg.ratelimit.failure_policy,
            "enabled": cfg.ratelimit.enabled,
        },
    )

    return app
