"""
Pytest configuration for integration tests.

Integration tests run against a real Redis (REDIS_URL, default
redis://localhost:6379/0) and are skipped when it is unreachable. Each test
uses its own key prefix and deletes its keys afterwards.
"""

import asyncio
import os
from uuid import uuid4

import pytest

from interventions_core.storage.base import StoreError
from interventions_core.storage.redis_store import RedisDataStore

os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")


@pytest.fixture
async def redis_store():
    """Initialized RedisDataStore under a throwaway key prefix."""
    store = RedisDataStore(
        redis_url=os.environ["REDIS_URL"],
        key_prefix=f"itest-{uuid4().hex[:8]}",
        feed_block_ms=100,
    )
    try:
        await store.init()
    except StoreError:
        await store.close()
        pytest.skip("Redis is not reachable")

    yield store

    # The engine under test may already have closed the store
    await store.init()

    keys = [key async for key in store.client.scan_iter(match=f"{store.key_prefix}:*")]
    if keys:
        await store.client.delete(*keys)
    await store.close()


@pytest.fixture
def wait_for():
    """Poll ``condition`` until it returns truthy or the timeout expires."""

    async def _wait_for(condition, timeout: float = 5.0, interval: float = 0.05):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while loop.time() < deadline:
            if await condition():
                return True
            await asyncio.sleep(interval)
        return False

    return _wait_for
