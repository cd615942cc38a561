"""Background reclamation of idle rate limit records.

The sweep walks the store page by page and deletes records whose last
write is older than the idle threshold. Pages are independent: a sweep can
stop after any page, and overlapping sweeps only race to delete the same
keys. A record written between scan and delete may be removed early; the
next check simply starts it again from an empty window.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from app.adapters.rate_limit.base import AbstractRateLimitStore
from app.core.config import MAX_BATCH_SIZE
from app.core.errors import StoreAppError, SweepAppError
from app.utils.clock import Clock, now_ms

logger = logging.getLogger(__name__)

DEFAULT_IDLE_THRESHOLD_SECONDS = 24 * 60 * 60


@dataclass(frozen=True)
class SweepResult:
    deleted: int
    pages_scanned: int
    pages_failed: int


class ExpirySweeper:
    """Deletes records idle for longer than ``idle_threshold_seconds``."""

    def __init__(
        self,
        store: AbstractRateLimitStore,
        *,
        idle_threshold_seconds: int = DEFAULT_IDLE_THRESHOLD_SECONDS,
        page_size: int = MAX_BATCH_SIZE,
        clock: Clock = now_ms,
    ) -> None:
        if idle_threshold_seconds < 1:
            raise ValueError("idle_threshold_seconds must be >= 1")
        if not 1 <= page_size <= MAX_BATCH_SIZE:
            raise ValueError(f"page_size must be between 1 and {MAX_BATCH_SIZE}")

        self._store = store
        self._idle_threshold_ms = idle_threshold_seconds * 1000
        self._page_size = page_size
        self._clock = clock

    def _delete_idle(self, keys: list[str]) -> int:
        # Redis SCAN pages may exceed the requested size; keep every batch bounded.
        deleted = 0
        for start in range(0, len(keys), MAX_BATCH_SIZE):
            deleted += self._store.batch_delete(keys[start:start + MAX_BATCH_SIZE])
        return deleted

    def run(self) -> SweepResult:
        """Scan all records once and delete the idle ones.

        Returns:
            SweepResult with the number of deleted records and page counts.

        Raises:
            SweepAppError: If pages were attempted and every one failed.
        """
        now = self._clock()
        cutoff = now - self._idle_threshold_ms
        cursor: str | None = None
        deleted = 0
        pages_scanned = 0
        pages_failed = 0
        pages_committed = 0

        while True:
            try:
                page = self._store.list_records(cursor, self._page_size)
            except StoreAppError as exc:
                pages_failed += 1
                logger.error(
                    "sweep.scan_failed",
                    extra={"error_code": exc.code, "pages_scanned": pages_scanned},
                )
                break

            pages_scanned += 1
            idle_keys = [key for key, record in page.items if record.last_update < cutoff]

            if not idle_keys:
                pages_committed += 1
            else:
                try:
                    deleted += self._delete_idle(idle_keys)
                    pages_committed += 1
                except StoreAppError as exc:
                    pages_failed += 1
                    logger.warning(
                        "sweep.page_failed",
                        extra={
                            "error_code": exc.code,
                            "page": pages_scanned,
                            "idle_keys": len(idle_keys),
                        },
                    )

            if page.next_cursor is None:
                break
            cursor = page.next_cursor

        if pages_failed and not pages_committed:
            raise SweepAppError(
                code="sweep_failed",
                message="Every page of the rate limit sweep failed",
                details={"pages_failed": pages_failed},
            )

        logger.info(
            "sweep.completed",
            extra={
                "deleted": deleted,
                "pages_scanned": pages_scanned,
                "pages_failed": pages_failed,
            },
        )
        return SweepResult(
            deleted=deleted,
            pages_scanned=pages_scanned,
            pages_failed=pages_failed,
        )
