"""Rate limit interceptor.

Runs as HTTP middleware around every request in two phases:

- pre-handling: resolve the applicable limit, count the request against the
  shared store and either reject it with 429 or let it through;
- post-handling: copy the quota onto successful responses.

The per-request InterceptionContext is the only state shared between the
phases. A fresh one is created for every request and exposed to handlers as
``request.state.rate_limit``.
"""

from __future__ import annotations

import enum
import hashlib
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Literal

from fastapi import Request, Response

from ratelimit_gate.core.errors import RateLimitExceededAppError, StoreUnavailableAppError
from ratelimit_gate.core.exception_handlers import build_error_response
from ratelimit_gate.core.limiter import FixedWindowRateLimiter, RateDecision, build_identity_key
from ratelimit_gate.core.policy import PolicyResolver, find_route, route_path_of

logger = logging.getLogger(__name__)

FailurePolicy = Literal["open", "closed"]
CallNext = Callable[[Request], Awaitable[Response]]


class InterceptState(str, enum.Enum):
    UNCHECKED = "unchecked"
    EXEMPT = "exempt"
    ALLOWED = "allowed"
    REJECTED = "rejected"
    RESPONDED = "responded"


@dataclass
class InterceptionContext:
    """Rate limit state of a single request."""

    state: InterceptState = InterceptState.UNCHECKED
    decision: RateDecision | None = None
    route_path: str | None = None
    key_hash: str | None = None


def _hash_limiter_key(key: str) -> str:
    """Hash the rate limit key for logging without exposing client IPs."""
    return hashlib.sha256(key.encode()).hexdigest()[:16]


class RateLimitInterceptor:
    """Two-phase request gate backed by a fixed-window limiter.

    Usage:
        app.middleware("http")(RateLimitInterceptor(resolver, limiter))
    """

    def __init__(
        self,
        resolver: PolicyResolver,
        limiter: FixedWindowRateLimiter,
        *,
        failure_policy: FailurePolicy = "closed",
        enabled: bool = True,
    ) -> None:
        if failure_policy not in ("open", "closed"):
            raise ValueError("failure_policy must be 'open' or 'closed'")
        self._resolver = resolver
        self._limiter = limiter
        self._failure_policy = failure_policy
        self._enabled = enabled

    async def __call__(self, request: Request, call_next: CallNext) -> Response:
        context = InterceptionContext()
        request.state.rate_limit = context

        rejection = await self.pre_handle(request, context)
        if rejection is not None:
            return rejection

        response = await call_next(request)
        self.post_handle(context, response)
        return response

    async def pre_handle(self, request: Request, context: InterceptionContext) -> Response | None:
        """Gate the request before routing.

        Returns:
            An error response when the request must not reach its handler,
            otherwise None.
        """
        if not self._enabled:
            context.state = InterceptState.EXEMPT
            return None

        route = find_route(request)
        client_ip = self._resolver.client_ip(request)
        config = self._resolver.resolve_route(route, client_ip)
        context.route_path = route_path_of(route)

        if config is None:
            context.state = InterceptState.EXEMPT
            logger.debug("rate_limit.exempt", extra={"route": context.route_path})
            return None

        key = build_identity_key(self._resolver.policy.namespace, client_ip, context.route_path)
        context.key_hash = _hash_limiter_key(key)

        try:
            decision = await self._limiter.evaluate(key, config)
        except StoreUnavailableAppError as exc:
            logger.error(
                "rate_limit.store_unavailable",
                extra={
                    "route": context.route_path,
                    "key_hash": context.key_hash,
                    "failure_policy": self._failure_policy,
                },
            )
            if self._failure_policy == "open":
                context.state = InterceptState.EXEMPT
                logger.warning("rate_limit.fail_open", extra={"route": context.route_path})
                return None
            context.state = InterceptState.REJECTED
            return build_error_response(exc)

        context.decision = decision

        if decision.exceeded:
            context.state = InterceptState.REJECTED
            logger.warning(
                "rate_limit.exceeded",
                extra={
                    "route": context.route_path,
                    "key_hash": context.key_hash,
                    "limit": decision.total,
                    "remaining": decision.remaining,
                    "window_ms": config.duration_ms,
                    "retry_after_s": decision.retry_after_seconds,
                },
            )
            return build_error_response(RateLimitExceededAppError(decision))

        context.state = InterceptState.ALLOWED
        logger.debug(
            "rate_limit.allowed",
            extra={
                "route": context.route_path,
                "key_hash": context.key_hash,
                "limit": decision.total,
                "remaining": decision.remaining,
                "window_ms": config.duration_ms,
            },
        )
        return None

    def post_handle(self, context: InterceptionContext, response: Response) -> None:
        """Annotate a successful response with the request's quota."""
        if context.state is not InterceptState.ALLOWED or context.decision is None:
            return

        # Error responses other than our own rejection don't carry quota info.
        if response.status_code < 400:
            for name, value in context.decision.as_headers().items():
                response.headers[name] = value

        context.state = InterceptState.RESPONDED
