"""Rate limiting wiring for FastAPI.

This module builds the rate limit services once per application and
exposes them to routes as dependencies. It also provides
``require_rate_limit(action)``, a dependency that enforces an action's
limit on any route and answers HTTP 429 when the subject is throttled.

Design goals:
- Minimal coupling: routes depend on dependency functions only.
- Swap-friendly: the store backend is chosen by configuration.
- Explicit state: services live on ``app.state``, never in module globals.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Callable

from fastapi import Depends, HTTPException, Request, status

from app.adapters.rate_limit.base import AbstractRateLimitStore
from app.adapters.rate_limit.factory import create_rate_limit_store
from app.core.auth import resolve_subject
from app.core.config import Settings, settings
from app.services.action_catalog import ActionCatalog
from app.services.expiry_sweeper import ExpirySweeper
from app.services.rate_limiter import CheckResult, SlidingWindowLimiter
from app.services.status_reporter import StatusReporter
from app.utils.clock import Clock, now_ms
from app.utils.keys import hash_for_logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitServices:
    """Everything the HTTP layer needs, sharing one store and catalog."""

    catalog: ActionCatalog
    store: AbstractRateLimitStore
    limiter: SlidingWindowLimiter
    reporter: StatusReporter
    sweeper: ExpirySweeper


def build_rate_limit_services(
    config: Settings | None = None,
    *,
    store: AbstractRateLimitStore | None = None,
    clock: Clock = now_ms,
) -> RateLimitServices:
    """Construct the catalog, store and services from settings.

    Args:
        config: Settings to use; defaults to the global settings.
        store: Pre-built store (tests); otherwise created by the factory.
        clock: Epoch-millisecond time source shared by all services.
    """

    cfg = config or settings
    catalog = ActionCatalog.from_settings(cfg.rate_limit.actions)
    store = store or create_rate_limit_store(cfg.store)

    return RateLimitServices(
        catalog=catalog,
        store=store,
        limiter=SlidingWindowLimiter(store, catalog, clock=clock),
        reporter=StatusReporter(store, catalog, clock=clock),
        sweeper=ExpirySweeper(
            store,
            idle_threshold_seconds=cfg.rate_limit.idle_threshold_seconds,
            page_size=cfg.rate_limit.sweep_page_size,
            clock=clock,
        ),
    )


def get_rate_limit_services(request: Request) -> RateLimitServices:
    return request.app.state.rate_limit


def get_limiter(request: Request) -> SlidingWindowLimiter:
    return get_rate_limit_services(request).limiter


def get_status_reporter(request: Request) -> StatusReporter:
    return get_rate_limit_services(request).reporter


def get_sweeper(request: Request) -> ExpirySweeper:
    return get_rate_limit_services(request).sweeper


def get_catalog(request: Request) -> ActionCatalog:
    return get_rate_limit_services(request).catalog


def rate_limit_headers(result: CheckResult, limit: int) -> dict[str, str]:
    """Build Retry-After / X-RateLimit-* headers for a check result.

    X-RateLimit-Reset is expressed in epoch seconds, rounded up.
    """

    headers = {
        "X-RateLimit-Limit": str(limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(math.ceil(result.reset_at / 1000)),
    }
    retry_after = getattr(result, "retry_after_seconds", None)
    if retry_after is not None:
        headers["Retry-After"] = str(retry_after)
    return headers


def require_rate_limit(action: str) -> Callable[..., CheckResult]:
    """Return a FastAPI dependency that consumes one ``action`` event.

    Usage:
        @router.post("/messages", dependencies=[Depends(require_rate_limit("messages"))])

    The dependency resolves the subject, runs the limiter and raises
    HTTP 429 when denied. Degraded admissions pass through. The dependency
    is synchronous so FastAPI runs the blocking store call in its threadpool.
    """

    def _enforce(
        limiter: SlidingWindowLimiter = Depends(get_limiter),
        subject_id: str = Depends(resolve_subject),
    ) -> CheckResult:
        result = limiter.check(subject_id, action)
        if result.allowed:
            return result

        limit = limiter.catalog.get(action).limit
        logger.warning(
            "rate_limit.exceeded",
            extra={
                "action": action,
                "subject_hash": hash_for_logging(subject_id),
                "limit": limit,
                "retry_after_s": getattr(result, "retry_after_seconds", None),
            },
        )

        headers = (
            rate_limit_headers(result, limit)
            if settings.app.rate_limit_include_headers
            else None
        )
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Rate limit exceeded. Try again later.",
            headers=headers,
        )

    return _enforce
