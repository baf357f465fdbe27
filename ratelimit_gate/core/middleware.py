"""Request correlation middleware.

Registered outside the rate limit interceptor: a 429 built there reads the
id from the context for its error body, and gets the same id as a header
on the way out here.

Usage:
    app.middleware("http")(build_request_id_middleware(cfg.log.request_id_header))
"""

from __future__ import annotations

import re
import time
import uuid
from typing import Awaitable, Callable

from fastapi import Request, Response

from ratelimit_gate.core.logging import clear_request_id, set_request_id

# Incoming ids end up in log lines and response headers.
_VALID_REQUEST_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")

CallNext = Callable[[Request], Awaitable[Response]]


def resolve_request_id(incoming: str | None) -> str:
    """Keep a well-formed client supplied id, otherwise generate one."""
    if incoming and _VALID_REQUEST_ID.match(incoming):
        return incoming
    return str(uuid.uuid4())


def build_request_id_middleware(header_name: str = "X-Request-ID"):
    """Create the HTTP middleware binding a request id per request.

    Args:
        header_name: Header read from the request and set on the response.

    Returns:
        Middleware callable for ``app.middleware("http")``. Responses carry
        the id and X-Request-Duration-ms, rejected ones included.
    """

    async def request_id_middleware(request: Request, call_next: CallNext) -> Response:
        request_id = resolve_request_id(request.headers.get(header_name))
        request.state.request_id = request_id
        set_request_id(request_id)
        start = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            clear_request_id()

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers[header_name] = request_id
        response.headers.setdefault("X-Request-Duration-ms", f"{duration_ms:.2f}")
        return response

    return request_id_middleware
