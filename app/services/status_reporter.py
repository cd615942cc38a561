"""Read-only view of current rate limit usage."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from app.adapters.rate_limit.base import AbstractRateLimitStore
from app.core.errors import StoreAppError
from app.services.action_catalog import ActionCatalog
from app.services.rate_limiter import prune_window
from app.utils.clock import Clock, now_ms
from app.utils.keys import build_record_key, hash_for_logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StatusReport:
    used: int
    limit: int
    remaining: int
    reset_at: int
    degraded: bool = False


class StatusReporter:
    """Reports usage for a (subject, action) pair without mutating it.

    Status is advisory: it reads outside any transaction, may race with
    concurrent checks, and falls back to the "never used" answer when the
    store is unavailable.
    """

    def __init__(
        self,
        store: AbstractRateLimitStore,
        catalog: ActionCatalog,
        *,
        clock: Clock = now_ms,
    ) -> None:
        self._store = store
        self._catalog = catalog
        self._clock = clock

    def status(self, subject_id: str, action: str) -> StatusReport:
        """Return used/remaining counts for the pair.

        Raises:
            ConfigAppError: If the action is unknown.
        """
        config = self._catalog.get(action)
        now = self._clock()
        key = build_record_key(subject_id, action)
        default = StatusReport(
            used=0,
            limit=config.limit,
            remaining=config.limit,
            reset_at=now + config.window_ms,
        )

        try:
            record = self._store.get(key)
        except StoreAppError as exc:
            logger.warning(
                "rate_limit.status_degraded",
                extra={
                    "action": action,
                    "key_hash": hash_for_logging(key),
                    "error_code": exc.code,
                },
            )
            return StatusReport(
                used=default.used,
                limit=default.limit,
                remaining=default.remaining,
                reset_at=default.reset_at,
                degraded=True,
            )

        if record is None:
            return default

        requests = prune_window(record.requests, now - config.window_ms)
        oldest = min(requests) if requests else now
        return StatusReport(
            used=len(requests),
            limit=config.limit,
            remaining=max(0, config.limit - len(requests)),
            reset_at=oldest + config.window_ms,
        )
