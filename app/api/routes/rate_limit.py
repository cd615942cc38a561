from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response, status

from app.core.auth import resolve_subject, verify_admin_api_key, verify_api_key
from app.core.rate_limit import (
    get_catalog,
    get_limiter,
    get_status_reporter,
    get_sweeper,
)
from app.schemas.rate_limit import (
    ActionCatalogResponse,
    ActionLimit,
    CheckRequest,
    CheckResponse,
    StatusResponse,
    SweepResponse,
)
from app.services.action_catalog import ActionCatalog
from app.services.expiry_sweeper import ExpirySweeper
from app.services.rate_limiter import SlidingWindowLimiter
from app.services.status_reporter import StatusReporter

router = APIRouter(tags=["Rate Limits"], dependencies=[Depends(verify_api_key)])
admin_router = APIRouter(
    prefix="/admin",
    tags=["Rate Limits Admin"],
    dependencies=[Depends(verify_admin_api_key)],
)


@router.post("/rate-limits/check", response_model=CheckResponse)
def check_rate_limit(
    body: CheckRequest,
    subject_id: str = Depends(resolve_subject),
    limiter: SlidingWindowLimiter = Depends(get_limiter),
) -> CheckResponse:
    """Consume one event of ``action`` for the calling subject.

    Lets client apps check a limit before attempting an action. A denied
    check is a normal 200 response with ``allowed=false``; it is not an
    error.
    """
    result = limiter.check(subject_id, body.action)
    return CheckResponse(
        allowed=result.allowed,
        remaining=result.remaining,
        reset_at=result.reset_at,
        degraded=result.degraded,
        reason=getattr(result, "reason", None),
        retry_after_seconds=getattr(result, "retry_after_seconds", None),
    )


@router.get("/rate-limits/status", response_model=StatusResponse)
def get_rate_limit_status(
    action: str = Query(..., min_length=1),
    subject_id: str = Depends(resolve_subject),
    reporter: StatusReporter = Depends(get_status_reporter),
) -> StatusResponse:
    """Show the calling subject's usage for ``action`` without consuming it."""
    report = reporter.status(subject_id, action)
    return StatusResponse(
        used=report.used,
        limit=report.limit,
        remaining=report.remaining,
        reset_at=report.reset_at,
        degraded=report.degraded,
    )


@router.get("/rate-limits/actions", response_model=ActionCatalogResponse)
def list_actions(catalog: ActionCatalog = Depends(get_catalog)) -> ActionCatalogResponse:
    return ActionCatalogResponse(
        actions=[
            ActionLimit(name=name, limit=cfg.limit, window_seconds=cfg.window_seconds)
            for name, cfg in sorted(catalog.actions.items())
        ]
    )


@admin_router.delete(
    "/rate-limits/{subject_id}/{action}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
)
def reset_rate_limit(
    subject_id: str,
    action: str,
    limiter: SlidingWindowLimiter = Depends(get_limiter),
) -> Response:
    """Administrative override: forget all recorded events for the pair."""
    limiter.reset(subject_id, action)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@admin_router.post("/rate-limits/sweep", response_model=SweepResponse)
def sweep_rate_limits(sweeper: ExpirySweeper = Depends(get_sweeper)) -> SweepResponse:
    """Delete idle records. Meant to be called by a daily scheduler."""
    result = sweeper.run()
    return SweepResponse(
        deleted=result.deleted,
        pages_scanned=result.pages_scanned,
        pages_failed=result.pages_failed,
    )
