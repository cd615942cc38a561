"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It sets TESTING so no .env file is loaded, and provides a controllable
clock plus ready-made stores and services.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["TESTING"] = "true"

os.environ.setdefault("APP_API_KEY_REQUIRED", "true")
os.environ.setdefault("APP_API_KEYS", "test-api-key-123,test-api-key-456")
os.environ.setdefault("APP_ADMIN_API_KEYS", "test-admin-key-789")
os.environ.setdefault("STORE_BACKEND", "memory")

import fakeredis
import pytest

from app.adapters.rate_limit.in_memory import InMemoryRateLimitStore
from app.adapters.rate_limit.redis_store import RedisRateLimitStore
from app.services.action_catalog import ActionCatalog, ActionConfig

T0 = 1_700_000_000_000


class FakeClock:
    """Deterministic epoch-millisecond clock."""

    def __init__(self, start_ms: int = T0) -> None:
        self.current = start_ms

    def __call__(self) -> int:
        return self.current

    def set_seconds(self, seconds: float) -> None:
        """Move to T0 + ``seconds``."""
        self.current = T0 + int(seconds * 1000)

    def advance(self, seconds: float) -> None:
        self.current += int(seconds * 1000)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def catalog() -> ActionCatalog:
    return ActionCatalog(
        {
            "messages": ActionConfig(limit=3, window_seconds=60),
            "likes": ActionConfig(limit=100, window_seconds=3600),
        }
    )


@pytest.fixture()
def memory_store() -> InMemoryRateLimitStore:
    return InMemoryRateLimitStore(max_retries=50)


@pytest.fixture()
def redis_client() -> fakeredis.FakeStrictRedis:
    client = fakeredis.FakeStrictRedis()
    client.flushall()
    return client


@pytest.fixture()
def redis_store(redis_client: fakeredis.FakeStrictRedis) -> RedisRateLimitStore:
    return RedisRateLimitStore(redis_client, key_prefix="test", max_retries=5)
