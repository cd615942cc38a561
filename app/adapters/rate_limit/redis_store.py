"""Redis-backed rate limit store.

Each record is a JSON document stored under ``{prefix}:{key}``. Writes go
through WATCH/MULTI/EXEC so concurrent transactions on the same key are
linearized: a commit that races another writer fails with WatchError and
the body is re-run against fresh state.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from redis import Redis
from redis.exceptions import RedisError, WatchError

from app.adapters.rate_limit.base import (
    AbstractRateLimitStore,
    RateLimitRecord,
    RecordPage,
    T,
    TransactionFn,
)
from app.core.config import MAX_BATCH_SIZE
from app.core.errors import StoreAppError
from app.utils.keys import hash_for_logging

logger = logging.getLogger(__name__)


def _store_error(operation: str, exc: Exception) -> StoreAppError:
    return StoreAppError(
        code="store_unavailable",
        message=f"Rate limit store failed during {operation}",
        details={"context": {"operation": operation, "error_type": type(exc).__name__}},
    )


class RedisRateLimitStore(AbstractRateLimitStore):
    """Shared store implemented with Redis optimistic transactions."""

    def __init__(
        self,
        client: Redis,
        *,
        key_prefix: str = "rateLimits",
        max_retries: int = 5,
    ) -> None:
        """Initialize the store.

        Args:
            client: Redis client; timeouts should be configured on it.
            key_prefix: Namespace for record keys.
            max_retries: Attempts for a transaction before giving up.

        Raises:
            ValueError: If max_retries is invalid.
        """
        if max_retries < 1:
            raise ValueError("max_retries must be >= 1")

        self._client = client
        self._key_prefix = key_prefix
        self._max_retries = max_retries

    @classmethod
    def from_url(
        cls,
        url: str,
        *,
        key_prefix: str = "rateLimits",
        max_retries: int = 5,
        socket_timeout_seconds: float = 2.0,
    ) -> "RedisRateLimitStore":
        """Create a store with a bounded-latency client for ``url``."""
        client = Redis.from_url(
            url,
            socket_timeout=socket_timeout_seconds,
            socket_connect_timeout=socket_timeout_seconds,
        )
        return cls(client, key_prefix=key_prefix, max_retries=max_retries)

    def _redis_key(self, key: str) -> str:
        return f"{self._key_prefix}:{key}"

    def _record_key(self, redis_key: str | bytes) -> str:
        if isinstance(redis_key, bytes):
            redis_key = redis_key.decode()
        return redis_key[len(self._key_prefix) + 1:]

    @staticmethod
    def _decode(raw: Any) -> RateLimitRecord | None:
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode()
        try:
            return RateLimitRecord.from_document(json.loads(raw))
        except (ValueError, TypeError, AttributeError) as exc:
            raise StoreAppError(
                code="corrupt_record",
                message="Stored rate limit record could not be decoded",
                details={"context": {"error_type": type(exc).__name__}},
            ) from exc

    def _decode_lenient(self, redis_key: str | bytes, raw: Any) -> RateLimitRecord | None:
        """Decode ``raw``, logging and returning None when it is corrupt."""
        try:
            return self._decode(raw)
        except StoreAppError:
            logger.warning(
                "store.corrupt_record",
                extra={
                    "backend": "redis",
                    "key_hash": hash_for_logging(self._record_key(redis_key)),
                },
            )
            return None

    @staticmethod
    def _encode(record: RateLimitRecord) -> str:
        return json.dumps(record.to_document(), separators=(",", ":"))

    def get(self, key: str) -> RateLimitRecord | None:
        try:
            raw = self._client.get(self._redis_key(key))
        except RedisError as exc:
            raise _store_error("get", exc) from exc
        return self._decode(raw)

    def run_transaction(self, key: str, fn: TransactionFn[T]) -> T:
        redis_key = self._redis_key(key)

        try:
            with self._client.pipeline() as pipe:
                for attempt in range(1, self._max_retries + 1):
                    try:
                        pipe.watch(redis_key)
                        # A corrupt document is replaced by the next write.
                        current = self._decode_lenient(redis_key, pipe.get(redis_key))
                        new_record, value = fn(current)
                        if new_record is None:
                            pipe.unwatch()
                            return value
                        pipe.multi()
                        pipe.set(redis_key, self._encode(new_record))
                        pipe.execute()
                        return value
                    except WatchError:
                        logger.debug(
                            "store.transaction_conflict",
                            extra={"backend": "redis", "attempt": attempt},
                        )
                        continue
                    finally:
                        pipe.reset()
        except RedisError as exc:
            raise _store_error("transaction", exc) from exc

        raise StoreAppError(
            code="transaction_retries_exhausted",
            message="Rate limit transaction kept conflicting with concurrent writes",
            details={"attempts": self._max_retries},
        )

    def delete(self, key: str) -> None:
        try:
            self._client.delete(self._redis_key(key))
        except RedisError as exc:
            raise _store_error("delete", exc) from exc

    def batch_delete(self, keys: list[str]) -> int:
        if len(keys) > MAX_BATCH_SIZE:
            raise ValueError(f"batch_delete accepts at most {MAX_BATCH_SIZE} keys")
        if not keys:
            return 0

        try:
            with self._client.pipeline(transaction=True) as pipe:
                pipe.delete(*(self._redis_key(k) for k in keys))
                (removed,) = pipe.execute()
        except RedisError as exc:
            raise _store_error("batch_delete", exc) from exc
        return int(removed)

    def list_records(self, cursor: str | None, limit: int) -> RecordPage:
        """Scan one page of records with SCAN + MGET.

        SCAN's COUNT is a hint, so a page can hold more or fewer keys than
        ``limit`` (including none while the scan is still in progress).
        Keys deleted between SCAN and MGET are dropped from the page. A
        corrupt document is listed as an empty record, which is always idle.
        """
        if limit < 1:
            raise ValueError("limit must be >= 1")

        scan_cursor = int(cursor) if cursor else 0
        try:
            next_scan_cursor, redis_keys = self._client.scan(
                cursor=scan_cursor,
                match=f"{self._key_prefix}:*",
                count=limit,
            )
            raw_values = self._client.mget(redis_keys) if redis_keys else []
        except RedisError as exc:
            raise _store_error("list_records", exc) from exc

        items: list[tuple[str, RateLimitRecord]] = []
        for redis_key, raw in zip(redis_keys, raw_values):
            if raw is None:
                continue
            record = self._decode_lenient(redis_key, raw) or RateLimitRecord()
            items.append((self._record_key(redis_key), record))

        next_cursor = str(next_scan_cursor) if int(next_scan_cursor) != 0 else None
        return RecordPage(items=items, next_cursor=next_cursor)
