"""Pytest fixtures and test utilities for the Klever context store test suite."""

import os
from typing import Any, Dict, Optional

import pytest
import redis
from redis import asyncio as aioredis

from klever_mcp.config import RedisSettings
from klever_mcp.contexts.service import ContextService
from klever_mcp.storage.memory import InMemoryStorage
from klever_mcp.storage.redis import RedisStorage

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379")

TEST_KEY_PREFIX = "test:klever:context:"
TEST_INDEX_PREFIX = "test:klever:index:"


def _redis_available() -> bool:
    client = redis.Redis.from_url(REDIS_URL, socket_connect_timeout=1, socket_timeout=1)
    try:
        return bool(client.ping())
    except redis.RedisError:
        return False
    finally:
        client.close()


def pytest_collection_modifyitems(config, items):
    """Skip requires_redis tests when no Redis server answers at REDIS_URL."""
    if not any(item.get_closest_marker("requires_redis") for item in items):
        return
    if _redis_available():
        return
    skip_redis = pytest.mark.skip(reason=f"Redis not reachable at {REDIS_URL}")
    for item in items:
        if item.get_closest_marker("requires_redis"):
            item.add_marker(skip_redis)


# ============================================================================
# REDIS FIXTURES
# ============================================================================


@pytest.fixture
async def redis_client():
    """
    Provide clean Redis connection with flush before and after test.

    Yields:
        Redis client instance with clean database

    Cleanup:
        Flushes Redis database after test
    """
    client = aioredis.from_url(
        REDIS_URL,
        encoding="utf-8",
        decode_responses=True,
        socket_connect_timeout=2,
        socket_timeout=2,
    )

    try:
        # Flush database before test
        await client.flushdb()

        yield client

    finally:
        # Flush database after test for isolation
        await client.flushdb()
        await client.aclose()


@pytest.fixture
def redis_settings():
    """RedisSettings pointing at the test server with test key prefixes."""
    return RedisSettings(
        url=REDIS_URL,
        key_prefix=TEST_KEY_PREFIX,
        index_prefix=TEST_INDEX_PREFIX,
        connect_retries=1,
    )


@pytest.fixture
async def redis_storage(redis_client, redis_settings):
    """
    RedisStorage against a flushed database.

    The shared client is closed afterwards because its connections are bound
    to the test's event loop.
    """
    storage = RedisStorage(redis_settings)
    yield storage
    await storage.close()


# ============================================================================
# IN-MEMORY FIXTURES
# ============================================================================


@pytest.fixture
def memory_storage():
    """Empty InMemoryStorage with the default capacity."""
    return InMemoryStorage()


@pytest.fixture
def service(memory_storage):
    """ContextService over in-memory storage."""
    return ContextService(memory_storage)


# ============================================================================
# HELPER UTILITIES
# ============================================================================


def make_payload(
    title: str = "Sample context",
    type: str = "code_example",
    content: str = "fn main() {}",
    tags: Optional[list[str]] = None,
    contract_type: Optional[str] = None,
    relevance_score: Optional[float] = None,
    description: Optional[str] = None,
    id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Build a wire-form context payload.

    Args:
        title: metadata.title
        type: Context type value
        content: Context body
        tags: metadata.tags
        contract_type: metadata.contractType
        relevance_score: metadata.relevanceScore
        description: metadata.description
        id: Explicit id

    Returns:
        Payload dict accepted by ContextService.ingest()
    """
    metadata: Dict[str, Any] = {"title": title}
    if tags is not None:
        metadata["tags"] = tags
    if contract_type is not None:
        metadata["contractType"] = contract_type
    if relevance_score is not None:
        metadata["relevanceScore"] = relevance_score
    if description is not None:
        metadata["description"] = description

    payload: Dict[str, Any] = {"type": type, "content": content, "metadata": metadata}
    if id is not None:
        payload["id"] = id
    return payload


# Export helper for use in tests
__all__ = [
    "redis_client",
    "redis_settings",
    "redis_storage",
    "memory_storage",
    "service",
    "make_payload",
]
