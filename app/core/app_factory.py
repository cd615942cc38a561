"""Application factory for the rate limiter API.

Centralizes app construction (metadata, middleware, handlers, routers and
rate limit services) so tests can build isolated apps with their own store
and clock.
"""

from __future__ import annotations

from fastapi import FastAPI

from app.api.routes import health_router, rate_limit_admin_router, rate_limit_router
from app.core.config import settings
from app.core.exception_handlers import setup_exception_handlers
from app.core.logging import configure_logging
from app.core.middleware import request_id_middleware
from app.core.openapi import apply_openapi_customizations
from app.core.rate_limit import RateLimitServices, build_rate_limit_services


def create_app(services: RateLimitServices | None = None) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        services: Pre-built rate limit services; built from settings if omitted.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="Rate Limiter API",
        description=(
            "Persistent sliding-window rate limiting for stateless backends. "
            "Limits are enforced per subject and action in a shared store; "
            "store outages fail open and are flagged as degraded."
        ),
        version="0.1.0",
    )
    app.state.rate_limit = services or build_rate_limit_services(settings)

    app.middleware("http")(request_id_middleware)
    setup_exception_handlers(app)

    app.include_router(rate_limit_router, prefix="/v1")
    app.include_router(rate_limit_admin_router, prefix="/v1")
    app.include_router(health_router)

    apply_openapi_customizations(app)

    return app
