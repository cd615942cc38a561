"""Factory pattern for creating rate limit store instances."""

from app.adapters.rate_limit.base import AbstractRateLimitStore
from app.adapters.rate_limit.in_memory import InMemoryRateLimitStore
from app.adapters.rate_limit.redis_store import RedisRateLimitStore
from app.core.config import StoreSettings, settings
from app.core.errors import ConfigAppError


def create_rate_limit_store(store_settings: StoreSettings | None = None) -> AbstractRateLimitStore:
    """Factory function to instantiate the configured store backend.

    Reads configuration from app.core.config.settings (Pydantic Settings)
    unless explicit settings are given.

    Returns:
        AbstractRateLimitStore: Configured store instance.

    Raises:
        ConfigAppError: If backend-specific requirements are not met.
    """
    cfg = store_settings or settings.store
    backend = cfg.backend.lower()

    if backend == "memory":
        return InMemoryRateLimitStore(max_retries=cfg.max_transaction_retries)

    if backend == "redis":
        if not cfg.redis_url:
            raise ConfigAppError(
                code="store_missing_redis_url",
                message="Redis store backend requires STORE_REDIS_URL environment variable",
            )
        return RedisRateLimitStore.from_url(
            cfg.redis_url,
            key_prefix=cfg.key_prefix,
            max_retries=cfg.max_transaction_retries,
            socket_timeout_seconds=cfg.socket_timeout_seconds,
        )

    raise ConfigAppError(
        code="store_unknown_backend",
        message=f"Unknown rate limit store backend: '{backend}'. Supported backends: memory, redis",
    )
