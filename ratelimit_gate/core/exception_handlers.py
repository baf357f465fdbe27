"""Global exception handlers for consistent error responses.

This module provides FastAPI exception handlers that intercept all errors
(domain and unexpected) and return consistent JSON responses with proper
HTTP status codes and traceability.

Design:
- AppError subclasses → appropriate HTTP status (429, 503, 500, 400)
- Unexpected Exception → generic 500 (safety net)
- All responses include request_id for distributed tracing

The rate limit interceptor runs as middleware, outside FastAPI's exception
handling, so it renders its errors through build_error_response directly.
"""

import logging
from fastapi import Request
from fastapi.responses import JSONResponse

from ratelimit_gate.core.errors import (
    AppError,
    InvalidConfigAppError,
    RateLimitExceededAppError,
    StoreUnavailableAppError,
)
from ratelimit_gate.core.logging import get_request_id

logger = logging.getLogger(__name__)


def status_code_for(exc: AppError) -> int:
    """Map a domain error to its HTTP status code."""
    if isinstance(exc, RateLimitExceededAppError):
        return 429
    if isinstance(exc, StoreUnavailableAppError):
        return 503
    if isinstance(exc, InvalidConfigAppError):
        return 500
    return 400


def build_error_response(exc: AppError) -> JSONResponse:
    """Render an AppError in the standard error envelope.

    Rate limit rejections also carry the X-RateLimit-* and Retry-After
    headers.

    Args:
        exc: AppError instance (or subclass).

    Returns:
        JSONResponse with appropriate status code, body and headers.
    """
    error_content = {
        "code": exc.code,
        "message": exc.message,
        "request_id": get_request_id(),
    }

    # Include details only if present (optional structured context)
    if exc.details:
        error_content["details"] = exc.details

    headers: dict[str, str] | None = None
    if isinstance(exc, RateLimitExceededAppError):
        headers = exc.decision.as_headers()
        headers["Retry-After"] = str(exc.decision.retry_after_seconds)

    return JSONResponse(
        status_code=status_code_for(exc),
        content={"error": error_content},
        headers=headers,
    )


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle domain application errors with consistent JSON format.

    All responses include:
    - error.code: Machine-readable error code
    - error.message: Human-readable message
    - error.request_id: For distributed tracing
    - error.details: Optional structured context

    Args:
        request: FastAPI request object.
        exc: AppError instance (or subclass).

    Returns:
        JSONResponse with appropriate status code and error details.
    """
    logger.warning(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "error_message": exc.message,
            "status_code": status_code_for(exc),
            "has_details": bool(exc.details),
            "request_id": get_request_id(),
        }
    )

    return build_error_response(exc)


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors (safety net).

    Logs detailed information for debugging while returning a generic
    message. No stack traces reach the client.

    Args:
        request: FastAPI request object.
        exc: Exception instance (unexpected).

    Returns:
        JSONResponse with generic error (no implementation details leaked).
    """
    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "request_path": request.url.path,
            "request_method": request.method,
            "request_id": get_request_id(),
        }
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "internal_server_error",
                "message": "An unexpected error occurred. Please try again later.",
                "request_id": get_request_id(),
            }
        },
    )


def setup_exception_handlers(app) -> None:
    """Register all exception handlers with FastAPI app.

    Args:
        app: FastAPI application instance.

    Example:
        >>> from fastapi import FastAPI
        >>> from ratelimit_gate.core.exception_handlers import setup_exception_handlers
        >>> app = FastAPI()
        >>> setup_exception_handlers(app)
    """
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(Exception)(general_exception_handler)
