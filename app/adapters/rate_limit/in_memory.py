"""In-memory rate limit store.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: commits are compare-and-swap on a per-key version, so the
  transaction body runs outside the lock exactly like it would against a
  remote store.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

from app.adapters.rate_limit.base import (
    AbstractRateLimitStore,
    RateLimitRecord,
    RecordPage,
    T,
    TransactionFn,
)
from app.core.config import MAX_BATCH_SIZE
from app.core.errors import StoreAppError

logger = logging.getLogger(__name__)


@dataclass
class _VersionedRecord:
    record: RateLimitRecord
    version: int


class InMemoryRateLimitStore(AbstractRateLimitStore):
    """Process-local store with optimistic, version-checked transactions.

    Important:
        State lives in this object only. It provides the same atomicity
        guarantees as the Redis store for threads of a single process, and
        none across processes.
    """

    def __init__(self, *, max_retries: int = 5) -> None:
        """Initialize the store.

        Args:
            max_retries: Attempts for a transaction before giving up.

        Raises:
            ValueError: If max_retries is invalid.
        """
        if max_retries < 1:
            raise ValueError("max_retries must be >= 1")

        self._max_retries = max_retries
        self._lock = threading.RLock()
        self._records: dict[str, _VersionedRecord] = {}
        self._version_counter = 0

    def get(self, key: str) -> RateLimitRecord | None:
        with self._lock:
            entry = self._records.get(key)
            return entry.record if entry else None

    def _snapshot(self, key: str) -> tuple[RateLimitRecord | None, int]:
        with self._lock:
            entry = self._records.get(key)
            if entry is None:
                return None, 0
            return entry.record, entry.version

    def _compare_and_set(self, key: str, expected_version: int, record: RateLimitRecord) -> bool:
        with self._lock:
            entry = self._records.get(key)
            current_version = entry.version if entry else 0
            if current_version != expected_version:
                return False
            self._version_counter += 1
            self._records[key] = _VersionedRecord(record=record, version=self._version_counter)
            return True

    def run_transaction(self, key: str, fn: TransactionFn[T]) -> T:
        for attempt in range(1, self._max_retries + 1):
            current, version = self._snapshot(key)
            new_record, value = fn(current)
            if new_record is None:
                return value
            if self._compare_and_set(key, version, new_record):
                return value
            logger.debug(
                "store.transaction_conflict",
                extra={"backend": "memory", "attempt": attempt},
            )

        raise StoreAppError(
            code="transaction_retries_exhausted",
            message="Rate limit transaction kept conflicting with concurrent writes",
            details={"attempts": self._max_retries},
        )

    def delete(self, key: str) -> None:
        with self._lock:
            self._records.pop(key, None)

    def batch_delete(self, keys: list[str]) -> int:
        if len(keys) > MAX_BATCH_SIZE:
            raise ValueError(f"batch_delete accepts at most {MAX_BATCH_SIZE} keys")

        with self._lock:
            removed = 0
            for key in keys:
                if self._records.pop(key, None) is not None:
                    removed += 1
            return removed

    def list_records(self, cursor: str | None, limit: int) -> RecordPage:
        """Page through records in key order.

        The cursor is the last key of the previous page, so records added or
        removed between pages never cause a restart from the beginning.
        """
        if limit < 1:
            raise ValueError("limit must be >= 1")

        with self._lock:
            keys = sorted(k for k in self._records if cursor is None or k > cursor)
            page_keys = keys[:limit]
            items = [(k, self._records[k].record) for k in page_keys]
            has_more = len(keys) > limit

        next_cursor = page_keys[-1] if has_more and page_keys else None
        return RecordPage(items=items, next_cursor=next_cursor)
