"""
Storage Base

Abstract interface for the document store the engine persists to.
Implementations: in-memory (tests, lite mode, local development) and Redis.

Records are plain dicts. The store assigns a string ``id`` on insert and
every mutation is reported on the matching change feed.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from interventions_core.contracts.changes import ChangeNotification
from interventions_core.contracts.types import ChangeType


class StoreError(Exception):
    """Error from the storage backend."""

    def __init__(self, message: str, collection: str | None = None):
        super().__init__(message)
        self.collection = collection


class DuplicateKeyError(StoreError):
    """A write violated a unique index."""


@dataclass
class IndexSpec:
    """Index definition (only unique indexes are enforced)."""

    name: str
    fields: tuple[str, ...]
    unique: bool = False


class ChangeFeed(ABC):
    """
    Push-style stream of change notifications for one (collection, change type).

    Iterate with ``async for``; iteration ends once the feed is closed and
    raises if the underlying transport fails. Implementations may also set
    ``cleanup`` to a callable that releases backend resources and is invoked
    best-effort before close().
    """

    cleanup: Callable[[], Awaitable[None] | None] | None = None

    def __init__(self, collection: str, change_type: ChangeType):
        self.collection = collection
        self.change_type = change_type

    def __aiter__(self) -> "ChangeFeed":
        return self

    async def open(self) -> None:
        """Fix the feed's start position; only changes after this are delivered."""
        pass

    @abstractmethod
    async def __anext__(self) -> ChangeNotification:
        """Wait for the next notification."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Stop the feed and release its resources. Safe to call twice."""
        pass

    @property
    @abstractmethod
    def closed(self) -> bool:
        pass


class DataStore(ABC):
    """
    Abstract document store.

    All methods are coroutines; each is a suspension point for callers.
    """

    @abstractmethod
    async def init(self) -> None:
        """Open connections. Idempotent."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close open feeds and connections."""
        pass

    @property
    @abstractmethod
    def is_initialized(self) -> bool:
        pass

    def check_initialization(self) -> None:
        if not self.is_initialized:
            raise StoreError("Data store has not been initialized")

    @abstractmethod
    async def ensure_store(self, collection: str) -> None:
        """Make sure a collection exists (idempotent)."""
        pass

    @abstractmethod
    async def ensure_indexes(self, collection: str, indexes: list[IndexSpec]) -> None:
        """Make sure indexes exist on a collection (idempotent by name)."""
        pass

    @abstractmethod
    async def get_all_in_collection(self, collection: str) -> list[dict[str, Any]]:
        """Return every record in insertion order."""
        pass

    @abstractmethod
    async def find_item_by_id_in_collection(
        self, collection: str, item_id: str
    ) -> dict[str, Any] | None:
        pass

    @abstractmethod
    async def find_items_in_collection(
        self, collection: str, criteria: dict[str, Any]
    ) -> list[dict[str, Any]]:
        """Return records whose top-level fields equal every criteria value."""
        pass

    @abstractmethod
    async def add_item_to_collection(
        self, collection: str, item: dict[str, Any]
    ) -> dict[str, Any]:
        """
        Insert a record.

        Returns:
            The stored record including its assigned ``id``

        Raises:
            DuplicateKeyError: If a unique index is violated
        """
        pass

    @abstractmethod
    async def update_item_by_id_in_collection(
        self, collection: str, item_id: str, update: dict[str, Any]
    ) -> dict[str, Any] | None:
        """
        Set the given top-level fields on a record.

        Returns:
            The full updated record, or None if no record has that id
        """
        pass

    @abstractmethod
    async def remove_item_from_collection(self, collection: str, item_id: str) -> bool:
        """Delete a record. Returns True if something was deleted."""
        pass

    @abstractmethod
    async def clear_collection(self, collection: str) -> None:
        pass

    async def is_collection_empty(self, collection: str) -> bool:
        return len(await self.get_all_in_collection(collection)) == 0

    @abstractmethod
    def get_change_feed(self, collection: str, change_type: ChangeType) -> ChangeFeed:
        """Open a change feed for one collection and change type."""
        pass


def matches_criteria(record: dict[str, Any], criteria: dict[str, Any]) -> bool:
    """Equality match on top-level fields."""
    return all(record.get(key) == value for key, value in criteria.items())
