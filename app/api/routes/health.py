from __future__ import annotations

from fastapi import APIRouter, Request

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check(request: Request) -> dict:
    """Liveness probe for load balancers; does not touch the store.

    Returns:
        dict: ``{"status": "ok", "store": <backend class name>}``.
    """

    services = getattr(request.app.state, "rate_limit", None)
    store_name = type(services.store).__name__ if services else None
    return {"status": "ok", "store": store_name}
