"""Unit tests for idle record reclamation."""

from __future__ import annotations

from unittest.mock import Mock

import pytest

from app.adapters.rate_limit.base import AbstractRateLimitStore, RateLimitRecord, RecordPage
from app.core.errors import StoreAppError, SweepAppError
from app.services.expiry_sweeper import ExpirySweeper
from tests.conftest import T0

HOUR_MS = 3600 * 1000


def _seed(store: AbstractRateLimitStore, key: str, last_update: int) -> None:
    store.run_transaction(
        key,
        lambda _: (RateLimitRecord(requests=(last_update,), last_update=last_update), None),
    )


@pytest.fixture(params=["memory", "redis"])
def store(request: pytest.FixtureRequest) -> AbstractRateLimitStore:
    return request.getfixturevalue(f"{request.param}_store")


def test_deletes_idle_and_keeps_recent_records(store, clock) -> None:
    _seed(store, "old:messages", T0 - 25 * HOUR_MS)
    _seed(store, "recent:messages", T0 - 1 * HOUR_MS)
    sweeper = ExpirySweeper(store, clock=clock)

    result = sweeper.run()

    assert result.deleted == 1
    assert result.pages_failed == 0
    assert store.get("old:messages") is None
    assert store.get("recent:messages") is not None


def test_second_run_deletes_nothing(store, clock) -> None:
    _seed(store, "old:messages", T0 - 25 * HOUR_MS)
    _seed(store, "recent:messages", T0 - 1 * HOUR_MS)
    sweeper = ExpirySweeper(store, clock=clock)

    assert sweeper.run().deleted == 1
    assert sweeper.run().deleted == 0


def test_empty_store(store, clock) -> None:
    result = ExpirySweeper(store, clock=clock).run()

    assert result.deleted == 0
    assert result.pages_failed == 0


def test_threshold_is_strict(store, clock) -> None:
    _seed(store, "edge:messages", T0 - 24 * HOUR_MS)

    assert ExpirySweeper(store, clock=clock).run().deleted == 0


def test_records_without_last_update_are_idle(memory_store, clock) -> None:
    memory_store.run_transaction("legacy:likes", lambda _: (RateLimitRecord(), None))

    assert ExpirySweeper(memory_store, clock=clock).run().deleted == 1


def test_walks_every_page(memory_store, clock) -> None:
    for i in range(25):
        _seed(memory_store, f"user-{i:02d}:messages", T0 - 30 * HOUR_MS)
    for i in range(5):
        _seed(memory_store, f"active-{i}:messages", T0)

    result = ExpirySweeper(memory_store, page_size=10, clock=clock).run()

    assert result.deleted == 25
    assert result.pages_scanned == 3
    remaining = memory_store.list_records(None, 100).items
    assert sorted(k for k, _ in remaining) == [f"active-{i}:messages" for i in range(5)]


def test_failed_page_is_skipped_and_sweep_continues(clock) -> None:
    idle = RateLimitRecord(last_update=T0 - 30 * HOUR_MS)
    store = Mock(spec=AbstractRateLimitStore)
    store.list_records.side_effect = [
        RecordPage(items=[("a:messages", idle)], next_cursor="1"),
        RecordPage(items=[("b:messages", idle), ("c:messages", idle)], next_cursor=None),
    ]
    store.batch_delete.side_effect = [
        StoreAppError(code="store_unavailable", message="down"),
        2,
    ]

    result = ExpirySweeper(store, clock=clock).run()

    assert result.deleted == 2
    assert result.pages_scanned == 2
    assert result.pages_failed == 1
    store.batch_delete.assert_called_with(["b:messages", "c:messages"])


def test_raises_when_every_page_fails(clock) -> None:
    idle = RateLimitRecord(last_update=T0 - 30 * HOUR_MS)
    store = Mock(spec=AbstractRateLimitStore)
    store.list_records.side_effect = [
        RecordPage(items=[("a:messages", idle)], next_cursor="1"),
        StoreAppError(code="store_unavailable", message="down"),
    ]
    store.batch_delete.side_effect = StoreAppError(code="store_unavailable", message="down")

    with pytest.raises(SweepAppError) as exc_info:
        ExpirySweeper(store, clock=clock).run()

    assert exc_info.value.details == {"pages_failed": 2}


def test_scan_failure_after_committed_page_keeps_result(clock) -> None:
    idle = RateLimitRecord(last_update=T0 - 30 * HOUR_MS)
    store = Mock(spec=AbstractRateLimitStore)
    store.list_records.side_effect = [
        RecordPage(items=[("a:messages", idle)], next_cursor="1"),
        StoreAppError(code="store_unavailable", message="down"),
    ]
    store.batch_delete.return_value = 1

    result = ExpirySweeper(store, clock=clock).run()

    assert result.deleted == 1
    assert result.pages_failed == 1


@pytest.mark.parametrize(
    "kwargs",
    [
        {"idle_threshold_seconds": 0},
        {"page_size": 0},
        {"page_size": 501},
    ],
)
def test_invalid_constructor_args(memory_store, kwargs: dict) -> None:
    with pytest.raises(ValueError):
        ExpirySweeper(memory_store, **kwargs)


def test_corrupt_document_does_not_stop_the_sweep(redis_store, redis_client, clock) -> None:
    for i in range(20):
        _seed(redis_store, f"user-{i:02d}:messages", T0 - 25 * HOUR_MS)
    redis_client.set("test:broken:messages", b"{not json")
    _seed(redis_store, "active:messages", T0)

    result = ExpirySweeper(redis_store, page_size=10, clock=clock).run()

    assert result.deleted == 21
    assert result.pages_failed == 0
    assert redis_client.keys("test:*") == [b"test:active:messages"]
