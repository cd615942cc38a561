"""Unit tests for the in-memory and Redis rate limit stores."""

from __future__ import annotations

from unittest.mock import Mock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from app.adapters.rate_limit.base import AbstractRateLimitStore, RateLimitRecord
from app.adapters.rate_limit.in_memory import InMemoryRateLimitStore
from app.adapters.rate_limit.redis_store import RedisRateLimitStore
from app.core.errors import StoreAppError


def _write(record: RateLimitRecord):
    return lambda _current: (record, "written")


@pytest.fixture(params=["memory", "redis"])
def store(request: pytest.FixtureRequest) -> AbstractRateLimitStore:
    return request.getfixturevalue(f"{request.param}_store")


class TestStoreContract:
    """Behavior shared by every store implementation."""

    def test_get_missing_returns_none(self, store) -> None:
        assert store.get("nobody:messages") is None

    def test_transaction_writes_and_returns_value(self, store) -> None:
        record = RateLimitRecord(requests=(1, 2), first_request_at=1, last_request_at=2, last_update=2)

        assert store.run_transaction("u:messages", _write(record)) == "written"
        assert store.get("u:messages") == record

    def test_transaction_sees_current_record(self, store) -> None:
        record = RateLimitRecord(requests=(5,), last_update=5)
        store.run_transaction("u:messages", _write(record))

        seen = []
        store.run_transaction("u:messages", lambda current: (None, seen.append(current)))

        assert seen == [record]

    def test_transaction_without_write_leaves_store_untouched(self, store) -> None:
        assert store.run_transaction("u:messages", lambda current: (None, current)) is None
        assert store.get("u:messages") is None

    def test_delete_is_idempotent(self, store) -> None:
        store.run_transaction("u:messages", _write(RateLimitRecord(last_update=1)))

        store.delete("u:messages")
        store.delete("u:messages")

        assert store.get("u:messages") is None

    def test_batch_delete_counts_existing_records(self, store) -> None:
        for key in ("a:x", "b:x"):
            store.run_transaction(key, _write(RateLimitRecord(last_update=1)))

        assert store.batch_delete(["a:x", "b:x", "missing:x"]) == 2
        assert store.get("a:x") is None

    def test_batch_delete_rejects_oversized_batches(self, store) -> None:
        with pytest.raises(ValueError):
            store.batch_delete([f"k{i}" for i in range(501)])

    def test_list_records_pages_through_everything(self, store) -> None:
        keys = {f"user-{i:02d}:likes" for i in range(23)}
        for key in keys:
            store.run_transaction(key, _write(RateLimitRecord(last_update=7)))

        seen: list[str] = []
        cursor = None
        for _ in range(100):
            page = store.list_records(cursor, 5)
            seen.extend(k for k, _ in page.items)
            cursor = page.next_cursor
            if cursor is None:
                break

        assert set(seen) == keys
        assert all(r.last_update == 7 for r in [store.get(k) for k in keys])


class TestInMemoryStore:
    def test_conflicting_commit_reruns_transaction(self) -> None:
        store = InMemoryRateLimitStore(max_retries=3)
        calls = []

        def _body(current):
            calls.append(current)
            if len(calls) == 1:
                # A concurrent writer commits between our read and our write.
                store.run_transaction("u:x", _write(RateLimitRecord(requests=(1,), last_update=1)))
            count = len(current.requests) if current else 0
            return RateLimitRecord(requests=tuple(range(count + 1)), last_update=2), count

        assert store.run_transaction("u:x", _body) == 1
        assert calls[0] is None
        assert calls[1].requests == (1,)
        assert store.get("u:x").requests == (0, 1)

    def test_exhausted_retries_raise_store_error(self, monkeypatch) -> None:
        store = InMemoryRateLimitStore(max_retries=2)
        monkeypatch.setattr(store, "_compare_and_set", Mock(return_value=False))

        with pytest.raises(StoreAppError) as exc_info:
            store.run_transaction("u:x", _write(RateLimitRecord()))

        assert exc_info.value.code == "transaction_retries_exhausted"

    def test_delete_between_read_and_write_is_a_conflict(self) -> None:
        store = InMemoryRateLimitStore(max_retries=3)
        store.run_transaction("u:x", _write(RateLimitRecord(requests=(1,), last_update=1)))
        calls = []

        def _body(current):
            calls.append(current)
            if len(calls) == 1:
                store.delete("u:x")
            return RateLimitRecord(requests=(9,), last_update=9), None

        store.run_transaction("u:x", _body)

        assert calls[1] is None
        assert store.get("u:x").requests == (9,)

    def test_invalid_max_retries(self) -> None:
        with pytest.raises(ValueError):
            InMemoryRateLimitStore(max_retries=0)


class TestRedisStore:
    def test_records_are_namespaced_json_documents(self, redis_store, redis_client) -> None:
        record = RateLimitRecord(requests=(10, 20), first_request_at=10, last_request_at=20, last_update=20)
        redis_store.run_transaction("u:messages", _write(record))

        raw = redis_client.get("test:u:messages")

        assert raw == (
            b'{"requests":[10,20],"firstRequestAt":10,"lastRequestAt":20,"lastUpdate":20}'
        )

    def test_concurrent_modification_reruns_transaction(self, redis_store, redis_client) -> None:
        calls = []

        def _body(current):
            calls.append(current)
            if len(calls) == 1:
                # Another client writes the watched key before EXEC.
                redis_client.set(
                    "test:u:x", b'{"requests":[1],"lastUpdate":1}'
                )
            count = len(current.requests) if current else 0
            return RateLimitRecord(requests=tuple(range(count + 1)), last_update=2), count

        assert redis_store.run_transaction("u:x", _body) == 1
        assert len(calls) == 2
        assert redis_store.get("u:x").requests == (0, 1)

    def test_exhausted_retries_raise_store_error(self, redis_client) -> None:
        store = RedisRateLimitStore(redis_client, key_prefix="test", max_retries=2)

        def _body(current):
            redis_client.set("test:u:x", b'{"requests":[],"lastUpdate":1}')
            return RateLimitRecord(last_update=2), None

        with pytest.raises(StoreAppError) as exc_info:
            store.run_transaction("u:x", _body)

        assert exc_info.value.code == "transaction_retries_exhausted"

    def test_missing_fields_decode_with_defaults(self, redis_store, redis_client) -> None:
        redis_client.set("test:legacy:likes", b'{"requests":[3,1,2]}')

        assert redis_store.get("legacy:likes") == RateLimitRecord(requests=(1, 2, 3))

    def test_corrupt_document_raises_store_error(self, redis_store, redis_client) -> None:
        redis_client.set("test:broken:likes", b"not-json")

        with pytest.raises(StoreAppError) as exc_info:
            redis_store.get("broken:likes")

        assert exc_info.value.code == "corrupt_record"

    def test_transaction_treats_corrupt_document_as_absent(self, redis_store, redis_client) -> None:
        redis_client.set("test:broken:likes", b"garbage")
        seen = []

        def _body(current):
            seen.append(current)
            return RateLimitRecord(requests=(7,), last_update=7), "written"

        assert redis_store.run_transaction("broken:likes", _body) == "written"
        assert seen == [None]
        assert redis_store.get("broken:likes") == RateLimitRecord(requests=(7,), last_update=7)

    def test_list_records_keeps_page_with_corrupt_document(self, redis_store, redis_client) -> None:
        redis_client.set("test:broken:likes", b"{not json")
        redis_store.run_transaction("ok:likes", _write(RateLimitRecord(last_update=5)))

        items = {}
        cursor = None
        while True:
            page = redis_store.list_records(cursor, 100)
            items.update(page.items)
            if page.next_cursor is None:
                break
            cursor = page.next_cursor

        assert items == {
            "broken:likes": RateLimitRecord(),
            "ok:likes": RateLimitRecord(last_update=5),
        }

    def test_list_records_ignores_other_namespaces(self, redis_store, redis_client) -> None:
        redis_client.set("other:u:x", b'{"lastUpdate":1}')
        redis_store.run_transaction("u:x", _write(RateLimitRecord(last_update=1)))

        page = redis_store.list_records(None, 100)
        while page.next_cursor is not None and not page.items:
            page = redis_store.list_records(page.next_cursor, 100)

        assert [k for k, _ in page.items] == ["u:x"]

    @pytest.mark.parametrize("method, args", [
        ("get", ("u:x",)),
        ("delete", ("u:x",)),
        ("batch_delete", (["u:x"],)),
        ("list_records", (None, 10)),
        ("run_transaction", ("u:x", _write(RateLimitRecord()))),
    ])
    def test_connection_errors_become_store_errors(self, method: str, args: tuple) -> None:
        client = Mock()
        for name in ("get", "delete", "scan", "pipeline"):
            getattr(client, name).side_effect = RedisConnectionError("refused")
        store = RedisRateLimitStore(client, key_prefix="test")

        with pytest.raises(StoreAppError) as exc_info:
            getattr(store, method)(*args)

        assert exc_info.value.code == "store_unavailable"

    def test_invalid_max_retries(self, redis_client) -> None:
        with pytest.raises(ValueError):
            RedisRateLimitStore(redis_client, max_retries=0)
