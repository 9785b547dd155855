"""
Redis Data Store

Persists collections in Redis and reports every mutation on a per-collection
Redis Stream, which change feeds tail with XREAD.

Key layout (prefix defaults to settings.STORE_KEY_PREFIX):
- {prefix}:{collection}                       hash   id -> JSON document
- {prefix}:{collection}:ids                   zset   id scored by insertion sequence
- {prefix}:{collection}:seq                   string insertion counter
- {prefix}:{collection}:unique:{index}        hash   JSON key -> id
- {prefix}:changes:{collection}               stream change_type / id / document
"""

import json
import logging
from collections import deque
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import uuid4

import redis.asyncio as aioredis

from basecore.redis import (
    create_redis_client,
    get_last_stream_id,
    ping,
    publish_to_stream,
    read_from_stream,
)
from interventions_core.contracts.changes import ChangeNotification
from interventions_core.contracts.types import ChangeType
from interventions_core.storage.base import (
    ChangeFeed,
    DataStore,
    DuplicateKeyError,
    IndexSpec,
    StoreError,
    matches_criteria,
)

logger = logging.getLogger(__name__)


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return str(value)


def dumps(document: dict[str, Any]) -> str:
    return json.dumps(document, default=_json_default)


class RedisChangeFeed(ChangeFeed):
    """Tails the collection's change stream, keeping entries of one change type."""

    def __init__(
        self,
        store: "RedisDataStore",
        collection: str,
        change_type: ChangeType,
        block_ms: int = 1000,
        batch_size: int = 100,
    ):
        super().__init__(collection, change_type)
        self._store = store
        self._block_ms = block_ms
        self._batch_size = batch_size
        self._last_id: str | None = None
        self._buffer: deque[ChangeNotification] = deque()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def open(self) -> None:
        """Pin the read position to the current end of the stream."""
        if self._last_id is None:
            self._last_id = await get_last_stream_id(
                self._store.client, self._store.change_stream_key(self.collection)
            )

    async def __anext__(self) -> ChangeNotification:
        await self.open()
        stream = self._store.change_stream_key(self.collection)

        while not self._buffer:
            if self._closed:
                raise StopAsyncIteration

            entries = await read_from_stream(
                self._store.client,
                stream,
                last_id=self._last_id,
                count=self._batch_size,
                block_ms=self._block_ms,
            )
            for msg_id, data in entries:
                self._last_id = msg_id
                if data.get("change_type") != self.change_type.value:
                    continue
                self._buffer.append(self._parse(data))

        return self._buffer.popleft()

    def _parse(self, data: dict[str, str]) -> ChangeNotification:
        raw_document = data.get("document")
        return ChangeNotification(
            collection=self.collection,
            change_type=self.change_type,
            record_id=data["id"],
            document=json.loads(raw_document) if raw_document else None,
        )

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._buffer.clear()
        self._store._detach_feed(self)


class RedisDataStore(DataStore):
    """DataStore implementation backed by Redis hashes and streams."""

    def __init__(
        self,
        client: aioredis.Redis | None = None,
        redis_url: str | None = None,
        key_prefix: str = "interventions",
        stream_max_len: int = 10000,
        feed_block_ms: int = 1000,
    ):
        self._client = client
        self._owns_client = client is None
        self._redis_url = redis_url
        self.key_prefix = key_prefix
        self.stream_max_len = stream_max_len
        self.feed_block_ms = feed_block_ms
        self._unique_indexes: dict[str, dict[str, IndexSpec]] = {}
        self._feeds: list[RedisChangeFeed] = []
        self._initialized = False

    @property
    def client(self) -> aioredis.Redis:
        if self._client is None:
            raise StoreError("Redis client is not connected")
        return self._client

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def init(self) -> None:
        if self._initialized:
            return
        if self._client is None:
            self._client = create_redis_client(self._redis_url)
        if not await ping(self._client):
            raise StoreError(f"Failed to connect to Redis at {self._redis_url or 'REDIS_URL'}")
        self._initialized = True
        logger.info("Redis data store initialized", extra={"key_prefix": self.key_prefix})

    async def close(self) -> None:
        for feed in list(self._feeds):
            await feed.close()
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
        self._initialized = False

    # --- Keys ---

    def collection_key(self, collection: str) -> str:
        return f"{self.key_prefix}:{collection}"

    def change_stream_key(self, collection: str) -> str:
        return f"{self.key_prefix}:changes:{collection}"

    def _ids_key(self, collection: str) -> str:
        return f"{self.key_prefix}:{collection}:ids"

    def _seq_key(self, collection: str) -> str:
        return f"{self.key_prefix}:{collection}:seq"

    def _unique_key(self, collection: str, index_name: str) -> str:
        return f"{self.key_prefix}:{collection}:unique:{index_name}"

    # --- Schema ---

    async def ensure_store(self, collection: str) -> None:
        # Hashes and streams are created on first write.
        self.check_initialization()
        self._unique_indexes.setdefault(collection, {})

    async def ensure_indexes(self, collection: str, indexes: list[IndexSpec]) -> None:
        self.check_initialization()
        registered = self._unique_indexes.setdefault(collection, {})
        for index in indexes:
            if index.unique and index.name not in registered:
                registered[index.name] = index
                logger.debug(f"Registered unique index {index.name} on {collection}")

    # --- Reads ---

    async def get_all_in_collection(self, collection: str) -> list[dict[str, Any]]:
        self.check_initialization()
        ids = await self.client.zrange(self._ids_key(collection), 0, -1)
        if not ids:
            return []
        raw = await self.client.hmget(self.collection_key(collection), ids)
        return [json.loads(doc) for doc in raw if doc is not None]

    async def find_item_by_id_in_collection(
        self, collection: str, item_id: str
    ) -> dict[str, Any] | None:
        self.check_initialization()
        raw = await self.client.hget(self.collection_key(collection), item_id)
        return json.loads(raw) if raw else None

    async def find_items_in_collection(
        self, collection: str, criteria: dict[str, Any]
    ) -> list[dict[str, Any]]:
        records = await self.get_all_in_collection(collection)
        return [record for record in records if matches_criteria(record, criteria)]

    # --- Writes ---

    async def add_item_to_collection(
        self, collection: str, item: dict[str, Any]
    ) -> dict[str, Any]:
        self.check_initialization()
        record = {k: v for k, v in item.items() if k != "id"}
        record["id"] = uuid4().hex
        # Normalise through JSON so the returned record matches what reads return
        record = json.loads(dumps(record))

        claimed = await self._claim_unique_keys(collection, record)
        try:
            seq = await self.client.incr(self._seq_key(collection))
            async with self.client.pipeline(transaction=True) as pipe:
                pipe.hset(self.collection_key(collection), record["id"], dumps(record))
                pipe.zadd(self._ids_key(collection), {record["id"]: seq})
                await pipe.execute()
        except Exception:
            await self._release_unique_keys(collection, claimed)
            raise

        await self._publish_change(collection, ChangeType.INSERT, record["id"], record)
        return record

    async def update_item_by_id_in_collection(
        self, collection: str, item_id: str, update: dict[str, Any]
    ) -> dict[str, Any] | None:
        existing = await self.find_item_by_id_in_collection(collection, item_id)
        if existing is None:
            return None

        changes = {k: v for k, v in update.items() if k != "id"}
        updated = json.loads(dumps({**existing, **changes}))

        claimed = await self._claim_unique_keys(collection, updated, previous=existing)
        try:
            await self.client.hset(self.collection_key(collection), item_id, dumps(updated))
        except Exception:
            await self._release_unique_keys(collection, claimed)
            raise
        await self._release_stale_unique_keys(collection, existing, updated)

        await self._publish_change(collection, ChangeType.UPDATE, item_id, updated)
        return updated

    async def remove_item_from_collection(self, collection: str, item_id: str) -> bool:
        existing = await self.find_item_by_id_in_collection(collection, item_id)
        if existing is None:
            return False

        async with self.client.pipeline(transaction=True) as pipe:
            pipe.hdel(self.collection_key(collection), item_id)
            pipe.zrem(self._ids_key(collection), item_id)
            deleted, _ = await pipe.execute()

        if not deleted:
            return False

        await self._release_unique_keys(collection, self._unique_entries(collection, existing))
        await self._publish_change(collection, ChangeType.DELETE, item_id, None)
        return True

    async def clear_collection(self, collection: str) -> None:
        self.check_initialization()
        ids = await self.client.zrange(self._ids_key(collection), 0, -1)
        keys = [self.collection_key(collection), self._ids_key(collection)]
        keys.extend(
            self._unique_key(collection, name)
            for name in self._unique_indexes.get(collection, {})
        )
        await self.client.delete(*keys)
        for item_id in ids:
            await self._publish_change(collection, ChangeType.DELETE, item_id, None)

    async def is_collection_empty(self, collection: str) -> bool:
        self.check_initialization()
        return await self.client.zcard(self._ids_key(collection)) == 0

    # --- Change feeds ---

    def get_change_feed(self, collection: str, change_type: ChangeType) -> RedisChangeFeed:
        self.check_initialization()
        feed = RedisChangeFeed(
            self,
            collection,
            ChangeType(change_type),
            block_ms=self.feed_block_ms,
        )
        self._feeds.append(feed)
        return feed

    def _detach_feed(self, feed: RedisChangeFeed) -> None:
        if feed in self._feeds:
            self._feeds.remove(feed)

    async def _publish_change(
        self,
        collection: str,
        change_type: ChangeType,
        item_id: str,
        document: dict[str, Any] | None,
    ) -> None:
        await publish_to_stream(
            self.client,
            self.change_stream_key(collection),
            {
                "change_type": change_type.value,
                "id": item_id,
                "document": dumps(document) if document is not None else "",
            },
            max_len=self.stream_max_len,
        )

    # --- Unique indexes ---

    def _unique_entries(
        self, collection: str, record: dict[str, Any]
    ) -> list[tuple[str, str]]:
        entries = []
        for index in self._unique_indexes.get(collection, {}).values():
            values = [record.get(f) for f in index.fields]
            if all(value is None for value in values):
                continue
            entries.append((self._unique_key(collection, index.name), json.dumps(values)))
        return entries

    async def _claim_unique_keys(
        self,
        collection: str,
        record: dict[str, Any],
        previous: dict[str, Any] | None = None,
    ) -> list[tuple[str, str]]:
        """HSETNX every unique key for the record, rolling back on conflict."""
        unchanged = set(self._unique_entries(collection, previous)) if previous else set()
        claimed: list[tuple[str, str]] = []

        for key, value in self._unique_entries(collection, record):
            if (key, value) in unchanged:
                continue
            if not await self.client.hsetnx(key, value, record["id"]):
                await self._release_unique_keys(collection, claimed)
                raise DuplicateKeyError(
                    f"Duplicate key {value} for {key}",
                    collection=collection,
                )
            claimed.append((key, value))

        return claimed

    async def _release_unique_keys(
        self, collection: str, entries: list[tuple[str, str]]
    ) -> None:
        for key, value in entries:
            await self.client.hdel(key, value)

    async def _release_stale_unique_keys(
        self,
        collection: str,
        previous: dict[str, Any],
        current: dict[str, Any],
    ) -> None:
        current_entries = set(self._unique_entries(collection, current))
        stale = [
            entry for entry in self._unique_entries(collection, previous)
            if entry not in current_entries
        ]
        await self._release_unique_keys(collection, stale)
