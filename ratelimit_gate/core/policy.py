"""Limit policy resolution.

Decides, per request, whether a limit applies and which one: the route's
own override, else the global default. Allowlisted clients are exempt.
Everything here is built once at startup and read-only afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Mapping, TypeVar

from starlette.requests import Request
from starlette.routing import BaseRoute, Match

from ratelimit_gate.core.allowlist import AllowlistMatcher, parse_cidr_list
from ratelimit_gate.core.client_ip import get_client_ip
from ratelimit_gate.core.config import RateLimitSettings
from ratelimit_gate.core.duration import parse_duration
from ratelimit_gate.core.errors import InvalidConfigAppError
from ratelimit_gate.core.limiter import LimitConfig

ROUTE_LIMIT_ATTR = "__rate_limit__"
UNMATCHED_ROUTE_PATH = "*"

_F = TypeVar("_F", bound=Callable[..., Any])


def build_limit_config(limit: Any, duration: Any, *, setting: str) -> LimitConfig:
    """Validate raw limit/duration values.

    Raises:
        InvalidConfigAppError: If limit is not an integer or duration is malformed.
    """
    if isinstance(limit, bool) or not isinstance(limit, int):
        raise InvalidConfigAppError(
            code="invalid_config",
            message=f"Invalid limit for {setting}: {limit!r}",
            details={"setting": setting, "value": str(limit)},
        )
    return LimitConfig(limit=limit, duration_ms=parse_duration(duration, setting=setting))


def rate_limit(*, limit: int, duration: int | str) -> Callable[[_F], _F]:
    """Attach a route-specific limit to an endpoint function.

    Use below the router decorator so FastAPI registers the marked function:

        @router.get("/login")
        @rate_limit(limit=5, duration="1m")
        async def login(): ...

    A ``limit`` of zero or less disables limiting for the route.

    Raises:
        InvalidConfigAppError: At import time if the values are malformed.
    """
    config = build_limit_config(limit, duration, setting="rate_limit")

    def decorator(func: _F) -> _F:
        setattr(func, ROUTE_LIMIT_ATTR, config)
        return func

    return decorator


def find_route(request: Request) -> BaseRoute | None:
    """Return the route the router will dispatch this request to.

    Mirrors Starlette's own matching: the first full match wins, otherwise
    the first partial match (e.g. wrong method).
    """
    partial: BaseRoute | None = None
    for route in request.app.router.routes:
        match, _ = route.matches(request.scope)
        if match == Match.FULL:
            return route
        if match == Match.PARTIAL and partial is None:
            partial = route
    return partial


def route_path_of(route: BaseRoute | None) -> str:
    if route is None:
        return UNMATCHED_ROUTE_PATH
    return getattr(route, "path", None) or UNMATCHED_ROUTE_PATH


@dataclass(frozen=True)
class RateLimitPolicy:
    """Process-wide rate limit configuration, built once at startup."""

    namespace: str
    global_config: LimitConfig
    route_limits: Mapping[str, LimitConfig] = field(default_factory=dict)
    allowlist: AllowlistMatcher = field(default_factory=AllowlistMatcher)
    trust_proxy_headers: bool = False

    @classmethod
    def from_settings(cls, cfg: RateLimitSettings) -> "RateLimitPolicy":
        """Build the policy from raw settings.

        Raises:
            InvalidConfigAppError: On malformed limits, durations or CIDR ranges.
        """
        if not cfg.namespace:
            raise InvalidConfigAppError(
                code="invalid_config",
                message="namespace must be a non-empty string",
                details={"setting": "namespace"},
            )

        global_config = build_limit_config(
            cfg.global_limit,
            cfg.global_duration,
            setting="global_duration",
        )
        route_limits = {
            path: build_limit_config(item.limit, item.duration, setting=f"route_limits[{path}]")
            for path, item in cfg.route_limits.items()
        }

        return cls(
            namespace=cfg.namespace,
            global_config=global_config,
            route_limits=MappingProxyType(route_limits),
            allowlist=AllowlistMatcher(parse_cidr_list(cfg.whitelist_ip_range)),
            trust_proxy_headers=cfg.trust_proxy_headers,
        )


class PolicyResolver:
    """Selects the LimitConfig for a request, or None when it is not limited."""

    def __init__(self, policy: RateLimitPolicy) -> None:
        self._policy = policy

    @property
    def policy(self) -> RateLimitPolicy:
        return self._policy

    def client_ip(self, request: Request) -> str:
        return get_client_ip(request, trust_proxy_headers=self._policy.trust_proxy_headers)

    def route_config(self, route: BaseRoute | None) -> LimitConfig | None:
        """Return the route override, if the route has one."""
        if route is None:
            return None
        endpoint = getattr(route, "endpoint", None)
        config = getattr(endpoint, ROUTE_LIMIT_ATTR, None)
        if isinstance(config, LimitConfig):
            return config
        return self._policy.route_limits.get(route_path_of(route))

    def resolve_route(self, route: BaseRoute | None, client_ip: str) -> LimitConfig | None:
        """Resolve the limit for an already matched route and client."""
        config = self.route_config(route)
        if config is None:
            config = self._policy.global_config

        if config.unlimited:
            return None
        if self._policy.allowlist.contains(client_ip):
            return None
        return config

    def resolve(self, request: Request) -> LimitConfig | None:
        """Resolve the limit that applies to ``request``.

        Returns:
            The route override or the global config, or None when no limit
            applies or the client is allowlisted.
        """
        return self.resolve_route(find_route(request), self.client_ip(request))
