"""
In-Memory Data Store

Dict-backed store for tests, the lite engine and local development.

- Records are deep-copied on the way in and out
- Unique indexes are enforced
- Change feeds receive notifications synchronously on each mutation
"""

import asyncio
import copy
import logging
from collections import defaultdict
from typing import Any
from uuid import uuid4

from interventions_core.contracts.changes import ChangeNotification
from interventions_core.contracts.types import ChangeType
from interventions_core.storage.base import (
    ChangeFeed,
    DataStore,
    DuplicateKeyError,
    IndexSpec,
    matches_criteria,
)

logger = logging.getLogger(__name__)

_CLOSED = object()


class MemoryChangeFeed(ChangeFeed):
    """Change feed backed by an asyncio queue."""

    def __init__(self, store: "MemoryDataStore", collection: str, change_type: ChangeType):
        super().__init__(collection, change_type)
        self._store = store
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, notification: ChangeNotification) -> None:
        if not self._closed:
            self._queue.put_nowait(notification)

    def fail(self, error: Exception) -> None:
        """Simulate a transport failure; the iterator raises ``error``."""
        if not self._closed:
            self._queue.put_nowait(error)

    async def __anext__(self) -> ChangeNotification:
        if self._closed:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._store._detach_feed(self)
        self._queue.put_nowait(_CLOSED)


class MemoryDataStore(DataStore):
    """In-process DataStore implementation."""

    def __init__(self):
        self._collections: dict[str, dict[str, dict[str, Any]]] = defaultdict(dict)
        self._unique_indexes: dict[str, dict[str, IndexSpec]] = defaultdict(dict)
        self._feeds: list[MemoryChangeFeed] = []
        self._initialized = False

    async def init(self) -> None:
        self._initialized = True

    async def close(self) -> None:
        for feed in list(self._feeds):
            await feed.close()
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def open_feeds(self) -> list[MemoryChangeFeed]:
        return list(self._feeds)

    async def ensure_store(self, collection: str) -> None:
        self.check_initialization()
        self._collections.setdefault(collection, {})

    async def ensure_indexes(self, collection: str, indexes: list[IndexSpec]) -> None:
        self.check_initialization()
        for index in indexes:
            if index.unique:
                self._unique_indexes[collection].setdefault(index.name, index)

    async def get_all_in_collection(self, collection: str) -> list[dict[str, Any]]:
        self.check_initialization()
        return [copy.deepcopy(record) for record in self._collections[collection].values()]

    async def find_item_by_id_in_collection(
        self, collection: str, item_id: str
    ) -> dict[str, Any] | None:
        self.check_initialization()
        record = self._collections[collection].get(item_id)
        return copy.deepcopy(record) if record is not None else None

    async def find_items_in_collection(
        self, collection: str, criteria: dict[str, Any]
    ) -> list[dict[str, Any]]:
        self.check_initialization()
        return [
            copy.deepcopy(record)
            for record in self._collections[collection].values()
            if matches_criteria(record, criteria)
        ]

    async def add_item_to_collection(
        self, collection: str, item: dict[str, Any]
    ) -> dict[str, Any]:
        self.check_initialization()
        record = copy.deepcopy(item)
        record.pop("id", None)
        record["id"] = uuid4().hex
        self._check_unique(collection, record)

        self._collections[collection][record["id"]] = record
        self._notify(collection, ChangeType.INSERT, record["id"], record)
        return copy.deepcopy(record)

    async def update_item_by_id_in_collection(
        self, collection: str, item_id: str, update: dict[str, Any]
    ) -> dict[str, Any] | None:
        self.check_initialization()
        existing = self._collections[collection].get(item_id)
        if existing is None:
            return None

        changes = {k: copy.deepcopy(v) for k, v in update.items() if k != "id"}
        updated = {**existing, **changes}
        self._check_unique(collection, updated, exclude_id=item_id)

        self._collections[collection][item_id] = updated
        self._notify(collection, ChangeType.UPDATE, item_id, updated)
        return copy.deepcopy(updated)

    async def remove_item_from_collection(self, collection: str, item_id: str) -> bool:
        self.check_initialization()
        removed = self._collections[collection].pop(item_id, None)
        if removed is None:
            return False
        self._notify(collection, ChangeType.DELETE, item_id, None)
        return True

    async def clear_collection(self, collection: str) -> None:
        self.check_initialization()
        removed_ids = list(self._collections[collection].keys())
        self._collections[collection].clear()
        for item_id in removed_ids:
            self._notify(collection, ChangeType.DELETE, item_id, None)

    def get_change_feed(self, collection: str, change_type: ChangeType) -> MemoryChangeFeed:
        self.check_initialization()
        feed = MemoryChangeFeed(self, collection, ChangeType(change_type))
        self._feeds.append(feed)
        logger.debug(f"Opened change feed for {collection}:{change_type}")
        return feed

    def _detach_feed(self, feed: MemoryChangeFeed) -> None:
        if feed in self._feeds:
            self._feeds.remove(feed)

    def _check_unique(
        self,
        collection: str,
        record: dict[str, Any],
        exclude_id: str | None = None,
    ) -> None:
        for index in self._unique_indexes[collection].values():
            key = tuple(record.get(f) for f in index.fields)
            if all(value is None for value in key):
                continue
            for other_id, other in self._collections[collection].items():
                if other_id == exclude_id:
                    continue
                if tuple(other.get(f) for f in index.fields) == key:
                    raise DuplicateKeyError(
                        f"Duplicate key for index {index.name}: {key}",
                        collection=collection,
                    )

    def _notify(
        self,
        collection: str,
        change_type: ChangeType,
        item_id: str,
        document: dict[str, Any] | None,
    ) -> None:
        for feed in list(self._feeds):
            if feed.collection == collection and feed.change_type == change_type:
                feed.push(
                    ChangeNotification(
                        collection=collection,
                        change_type=change_type,
                        record_id=item_id,
                        document=copy.deepcopy(document),
                    )
                )
