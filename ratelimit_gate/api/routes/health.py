from __future__ import annotations

from fastapi import APIRouter, Request

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check(request: Request) -> dict:
    """Health check endpoint.

    Used by load balancers and monitoring systems to determine service health.
    Reports which counter store backs the limiter.

    Returns:
        dict: ``{"status": "ok", "store": <store name>}``.
    """

    limiter = getattr(request.app.state, "rate_limiter", None)
    store = limiter.store.name if limiter is not None else None
    return {"status": "ok", "store": store}
