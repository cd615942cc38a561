"""Persistent sliding window rate limiter.

Admission for a (subject, action) pair is decided inside one store
transaction: read the record, drop timestamps that left the window, and
either append ``now`` or reject without writing. The store linearizes
concurrent transactions on the same key, so two callers can never both
take the last free slot.

Failure policy: when the store cannot complete the transaction the call is
admitted and flagged as degraded. An outage of the limiting substrate must
not turn into an outage of the feature it protects.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from app.adapters.rate_limit.base import AbstractRateLimitStore, RateLimitRecord
from app.core.errors import AuthenticationAppError, StoreAppError, ValidationAppError
from app.services.action_catalog import ActionCatalog, ActionConfig
from app.utils.clock import Clock, now_ms
from app.utils.keys import build_record_key, hash_for_logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckResult:
    """Outcome of a rate limit check.

    Attributes:
        remaining: Admissions left in the current window (0 when denied).
        reset_at: Epoch ms when a slot frees up (denied) or when this
            admission leaves the window (allowed).
    """

    remaining: int
    reset_at: int

    allowed = True
    degraded = False


@dataclass(frozen=True)
class Allowed(CheckResult):
    """Request admitted and recorded."""


@dataclass(frozen=True)
class Denied(CheckResult):
    """Request rejected; nothing was recorded."""

    retry_after_seconds: int = 1

    allowed = False


@dataclass(frozen=True)
class DegradedAllowed(CheckResult):
    """Request admitted without enforcement because the store failed."""

    reason: str = "store_unavailable"

    degraded = True


def prune_window(requests: tuple[int, ...], window_start: int) -> list[int]:
    """Keep timestamps strictly newer than ``window_start``."""

    return [ts for ts in requests if ts > window_start]


class SlidingWindowLimiter:
    """Decides admission for (subject, action) pairs against a shared store."""

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

    @property
    def catalog(self) -> ActionCatalog:
        return self._catalog

    def _evaluate(
        self,
        record: RateLimitRecord | None,
        config: ActionConfig,
        now: int,
    ) -> tuple[RateLimitRecord | None, CheckResult]:
        """Transaction body: decide and build the record to write, if any."""
        window_start = now - config.window_ms
        requests = prune_window(record.requests, window_start) if record else []

        if len(requests) >= config.limit:
            reset_at = min(requests) + config.window_ms
            retry_after = max(1, math.ceil((reset_at - now) / 1000))
            return None, Denied(remaining=0, reset_at=reset_at, retry_after_seconds=retry_after)

        requests.append(now)
        first_request_at = record.first_request_at if record and record.first_request_at else now
        new_record = RateLimitRecord(
            requests=tuple(requests),
            first_request_at=first_request_at,
            last_request_at=now,
            last_update=now,
        )
        result = Allowed(
            remaining=config.limit - len(requests),
            reset_at=now + config.window_ms,
        )
        return new_record, result

    def check(self, subject_id: str, action: str) -> CheckResult:
        """Check and, when admitted, record one event for the pair.

        Args:
            subject_id: Authenticated subject identifier.
            action: Action name from the catalog.

        Returns:
            Allowed, Denied or DegradedAllowed.

        Raises:
            ConfigAppError: If the action is unknown.
            AuthenticationAppError: If subject_id is empty.
        """
        config = self._catalog.get(action)
        if not subject_id:
            raise AuthenticationAppError(
                code="missing_subject",
                message="A subject identifier is required for rate limiting",
            )

        now = self._clock()
        key = build_record_key(subject_id, action)

        try:
            result = self._store.run_transaction(
                key, lambda record: self._evaluate(record, config, now)
            )
        except StoreAppError as exc:
            logger.warning(
                "rate_limit.degraded",
                extra={
                    "action": action,
                    "key_hash": hash_for_logging(key),
                    "error_code": exc.code,
                    "limit": config.limit,
                },
            )
            return DegradedAllowed(
                remaining=config.limit,
                reset_at=now + config.window_ms,
                reason=exc.code,
            )

        if result.allowed:
            logger.debug(
                "rate_limit.allowed",
                extra={
                    "action": action,
                    "key_hash": hash_for_logging(key),
                    "remaining": result.remaining,
                },
            )
        else:
            logger.info(
                "rate_limit.denied",
                extra={
                    "action": action,
                    "key_hash": hash_for_logging(key),
                    "limit": config.limit,
                    "window_s": config.window_seconds,
                    "reset_at": result.reset_at,
                },
            )
        return result

    def reset(self, subject_id: str, action: str) -> None:
        """Delete the record for the pair; a no-op when absent.

        Raises:
            ConfigAppError: If the action is unknown.
            ValidationAppError: If subject_id is blank.
            StoreAppError: If the store fails.
        """
        self._catalog.get(action)
        if not subject_id.strip():
            raise ValidationAppError(
                code="invalid_subject",
                message="A non-blank subject identifier is required to reset a limit",
                details={"field": "subject_id"},
            )
        key = build_record_key(subject_id, action)
        self._store.delete(key)
        logger.info(
            "rate_limit.reset",
            extra={"action": action, "key_hash": hash_for_logging(key)},
        )
