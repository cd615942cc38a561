"""Rate limit store interfaces.

Services depend on this abstraction (not the concrete implementation) so
the storage backend can be swapped (in-memory for tests, Redis for shared
deployments) without touching the limiter logic.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class RateLimitRecord:
    """Persisted sliding window state for one (subject, action) key.

    Attributes:
        requests: Admitted event timestamps in epoch milliseconds, ascending.
        first_request_at: Epoch ms of the first admission in this record.
        last_request_at: Epoch ms of the latest admission.
        last_update: Epoch ms of the latest write, used for idle detection.
    """

    requests: tuple[int, ...] = ()
    first_request_at: int = 0
    last_request_at: int = 0
    last_update: int = 0

    def to_document(self) -> dict[str, Any]:
        """Serialize into the stored document shape."""
        return {
            "requests": list(self.requests),
            "firstRequestAt": self.first_request_at,
            "lastRequestAt": self.last_request_at,
            "lastUpdate": self.last_update,
        }

    @classmethod
    def from_document(cls, data: Mapping[str, Any]) -> "RateLimitRecord":
        """Build a record from a stored document, tolerating missing fields."""
        return cls(
            requests=tuple(sorted(int(ts) for ts in data.get("requests") or ())),
            first_request_at=int(data.get("firstRequestAt") or 0),
            last_request_at=int(data.get("lastRequestAt") or 0),
            last_update=int(data.get("lastUpdate") or 0),
        )


# A transaction body receives the current record (or None when absent) and
# returns (record_to_write_or_None, value_for_caller). None means "no write".
TransactionFn = Callable[[RateLimitRecord | None], tuple[RateLimitRecord | None, T]]


@dataclass(frozen=True)
class RecordPage:
    """One page of a store scan.

    Attributes:
        items: (key, record) pairs found on this page.
        next_cursor: Opaque cursor for the next page, None when exhausted.
    """

    items: list[tuple[str, RateLimitRecord]] = field(default_factory=list)
    next_cursor: str | None = None


class AbstractRateLimitStore(ABC):
    """Interface for persistent rate limit stores.

    Implementations must raise StoreAppError for every infrastructure
    failure so callers can apply their own failure policy.
    """

    @abstractmethod
    def get(self, key: str) -> RateLimitRecord | None:
        """Read a record without locking; None when absent."""
        raise NotImplementedError

    @abstractmethod
    def run_transaction(self, key: str, fn: TransactionFn[T]) -> T:
        """Atomically read-modify-write a single key.

        ``fn`` may be invoked more than once when a concurrent write is
        detected; it must not have side effects outside its return value.

        Args:
            key: Record key.
            fn: Transaction body, see TransactionFn.

        Returns:
            The value returned by the committed invocation of ``fn``.

        Raises:
            StoreAppError: If the store fails or retries are exhausted.
        """
        raise NotImplementedError

    @abstractmethod
    def delete(self, key: str) -> None:
        """Delete a record; deleting an absent key is a no-op."""
        raise NotImplementedError

    @abstractmethod
    def batch_delete(self, keys: list[str]) -> int:
        """Atomically delete up to MAX_BATCH_SIZE keys.

        Returns:
            Number of records that existed and were removed.

        Raises:
            ValueError: If more than MAX_BATCH_SIZE keys are given.
            StoreAppError: If the batch could not be committed.
        """
        raise NotImplementedError

    @abstractmethod
    def list_records(self, cursor: str | None, limit: int) -> RecordPage:
        """Return one page of stored records starting at ``cursor``."""
        raise NotImplementedError
