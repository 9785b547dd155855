"""
Storage - the document store the engine persists to.

Use create_data_store() to build the backend selected by STORE_BACKEND.
"""

from basecore.settings import Settings, get_settings
from interventions_core.storage.base import (
    ChangeFeed,
    DataStore,
    DuplicateKeyError,
    IndexSpec,
    StoreError,
)
from interventions_core.storage.helpers import handle_store_error
from interventions_core.storage.memory import MemoryChangeFeed, MemoryDataStore
from interventions_core.storage.redis_store import RedisChangeFeed, RedisDataStore


def create_data_store(settings: Settings | None = None) -> DataStore:
    """
    Create the data store configured by settings.

    Args:
        settings: Settings to use (defaults to get_settings())

    Returns:
        An uninitialized DataStore; call ``await store.init()`` before use

    Raises:
        ValueError: If STORE_BACKEND is not "memory" or "redis"
    """
    settings = settings or get_settings()
    backend = settings.STORE_BACKEND.lower()

    if backend == "memory":
        return MemoryDataStore()
    if backend == "redis":
        return RedisDataStore(
            redis_url=settings.REDIS_URL,
            key_prefix=settings.STORE_KEY_PREFIX,
            stream_max_len=settings.CHANGE_STREAM_MAX_LEN,
            feed_block_ms=settings.CHANGE_FEED_BLOCK_MS,
        )
    raise ValueError(f"Unknown STORE_BACKEND: {settings.STORE_BACKEND}")


__all__ = [
    "ChangeFeed",
    "DataStore",
    "DuplicateKeyError",
    "IndexSpec",
    "MemoryChangeFeed",
    "MemoryDataStore",
    "RedisChangeFeed",
    "RedisDataStore",
    "StoreError",
    "create_data_store",
    "handle_store_error",
]
