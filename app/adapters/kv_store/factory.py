"""Factory for the process-wide key-value store."""

import logging

from app.adapters.kv_store.base import AbstractKeyValueStore
from app.adapters.kv_store.in_memory import InMemoryKeyValueStore
from app.adapters.kv_store.redis_store import RedisKeyValueStore
from app.core.config import RedisSettings, settings

logger = logging.getLogger(__name__)


def create_kv_store(redis_settings: RedisSettings | None = None) -> AbstractKeyValueStore:
    """Instantiate the store selected by configuration.

    Reads ``settings.redis`` unless explicit settings are passed. The
    returned store is not connected yet; call ``await store.connect()``.

    Returns:
        AbstractKeyValueStore: Redis store when enabled, in-memory otherwise.
    """
    cfg = redis_settings or settings.redis

    if cfg.enabled:
        return RedisKeyValueStore(cfg)

    logger.info(
        "store.selected",
        extra={"backend": "memory", "reason": "redis_disabled"},
    )
    return InMemoryKeyValueStore()
