"""Application-level exception types.

This module defines domain errors used across the limiter, its store
adapters and the HTTP layer, enabling consistent error handling, logging,
and API responses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, NotRequired, TypedDict

if TYPE_CHECKING:
    from ratelimit_gate.core.limiter import RateDecision


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional so each error only carries what is relevant to it.
    """

    code: str
    message: str
    hint: str
    limit: int
    remaining: int
    reset_at: int
    retry_after: int
    store: str
    timeout_seconds: float
    setting: str
    value: str
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class InvalidConfigAppError(AppError):
    """Raised at startup when limit, duration or allowlist settings are malformed."""


class StoreUnavailableAppError(AppError):
    """Raised when the counter store cannot be reached or times out."""


class RateLimitExceededAppError(AppError):
    """Raised when a request pushes its window count beyond the limit.

    Carries the decision so the HTTP layer can emit the quota headers.
    """

    def __init__(self, decision: "RateDecision", message: str = "Rate limit exceeded") -> None:
        super().__init__(
            code="rate_limit_exceeded",
            message=message,
            details={
                "limit": decision.total,
                "remaining": decision.remaining,
                "reset_at": decision.reset_at,
            },
        )
        self.decision = decision
