"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It sets the environment before settings are imported so no .env file
is loaded and no Redis server is required.
"""

import os
from unittest.mock import Mock

# CRITICAL: Set this before any imports that might load settings
os.environ["TESTING"] = "true"

os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("APP_API_KEY_REQUIRED", "true")
os.environ.setdefault("APP_API_KEYS", "test-api-key-123,test-api-key-456")
os.environ.setdefault("APP_RATE_LIMIT_ENABLED", "true")

import pytest

from app.adapters.kv_store.in_memory import InMemoryKeyValueStore
from app.services.cache_service import CacheService


@pytest.fixture
def clock() -> Mock:
    """Controllable time source (UNIX seconds)."""
    return Mock(return_value=1_000.0)


@pytest.fixture
def store(clock: Mock) -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore(clock=clock)


@pytest.fixture
def cache(store: InMemoryKeyValueStore) -> CacheService:
    return CacheService(store)
