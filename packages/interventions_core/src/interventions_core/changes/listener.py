"""
Change Listener Manager

Bridges the data store's change feeds to in-process callbacks.

- At most one listener per (collection, change type); a second subscribe
  only logs a warning
- Each listener runs one asyncio dispatch task that awaits the callback for
  every notification, then republishes the payload on a ChangeEventBus
  under "collection:change_type"
- Callback and feed transport errors are logged, never raised
- unsubscribe() always closes the feed, even when cleanup fails
- unsubscribe() never interrupts a callback in progress: it closes the feed
  and waits for the callback to return
"""

import asyncio
import contextlib
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from interventions_core.contracts.changes import ChangeNotification
from interventions_core.contracts.types import ChangeType
from interventions_core.storage.base import ChangeFeed, DataStore
from interventions_core.utils import maybe_await

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[dict[str, Any]], Awaitable[None] | None]


def listener_key(collection: str, change_type: ChangeType | str) -> str:
    return f"{collection}:{ChangeType(change_type).value}"


class ChangeEventBus:
    """In-process fan-out of change payloads keyed by "collection:change_type"."""

    def __init__(self):
        self._listeners: dict[str, list[ChangeCallback]] = defaultdict(list)

    def on(self, key: str, listener: ChangeCallback) -> None:
        self._listeners[key].append(listener)

    def off(self, key: str, listener: ChangeCallback) -> None:
        if listener in self._listeners.get(key, []):
            self._listeners[key].remove(listener)

    def listener_count(self, key: str) -> int:
        return len(self._listeners.get(key, []))

    async def emit(self, key: str, payload: dict[str, Any]) -> None:
        for listener in list(self._listeners.get(key, [])):
            try:
                await maybe_await(listener(payload))
            except Exception as e:
                logger.error(
                    f"Change bus listener failed for {key}: {e}",
                    extra={"key": key},
                    exc_info=True,
                )


@dataclass
class ListenerEntry:
    """An open feed plus the task dispatching its notifications."""

    feed: ChangeFeed
    task: asyncio.Task | None = None
    delivering: bool = False


class ChangeListenerManager:
    """
    Manages change feed subscriptions for one data store.

    Usage:
        listeners = ChangeListenerManager(store)
        await listeners.subscribe("users", ChangeType.INSERT, on_insert)
        ...
        await listeners.unsubscribe_all()
    """

    def __init__(self, store: DataStore, bus: ChangeEventBus | None = None):
        self.store = store
        self.bus = bus or ChangeEventBus()
        self._entries: dict[str, ListenerEntry] = {}

    def has(self, collection: str, change_type: ChangeType) -> bool:
        return listener_key(collection, change_type) in self._entries

    @property
    def keys(self) -> list[str]:
        return list(self._entries)

    async def subscribe(
        self,
        collection: str,
        change_type: ChangeType,
        callback: ChangeCallback,
    ) -> None:
        """
        Open a change feed and dispatch its notifications to ``callback``.

        Args:
            collection: Collection to watch
            change_type: insert, update or delete
            callback: Called with the notification payload (sync or async)
        """
        key = listener_key(collection, change_type)
        if key in self._entries:
            logger.warning(f"Change listener for {key} already exists")
            return

        feed = self.store.get_change_feed(collection, ChangeType(change_type))
        entry = ListenerEntry(feed=feed)
        self._entries[key] = entry

        await feed.open()
        entry.task = asyncio.create_task(
            self._dispatch(key, entry, callback),
            name=f"change-listener:{key}",
        )
        logger.info(f"Subscribed to changes on {key}")

    async def _dispatch(self, key: str, entry: ListenerEntry, callback: ChangeCallback) -> None:
        try:
            async for notification in entry.feed:
                entry.delivering = True
                try:
                    await self._deliver(key, notification, callback)
                finally:
                    entry.delivering = False
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(
                f"Change feed error on {key}: {e}",
                extra={"key": key, "error": str(e)},
                exc_info=True,
            )

    async def _deliver(
        self,
        key: str,
        notification: ChangeNotification,
        callback: ChangeCallback,
    ) -> None:
        payload = notification.payload
        try:
            await maybe_await(callback(payload))
        except Exception as e:
            logger.error(
                f"Change listener callback failed for {key}: {e}",
                extra={"key": key, "record_id": notification.record_id},
                exc_info=True,
            )
        await self.bus.emit(key, payload)

    async def unsubscribe(self, collection: str, change_type: ChangeType) -> None:
        """Tear down the listener for a key; the feed is always closed."""
        key = listener_key(collection, change_type)
        entry = self._entries.get(key)
        if entry is None:
            logger.warning(f"No change listener for {key} to unsubscribe")
            return

        await self._teardown(key, entry)
        self._entries.pop(key, None)
        logger.info(f"Unsubscribed from changes on {key}")

    async def unsubscribe_all(self) -> None:
        for key, entry in list(self._entries.items()):
            await self._teardown(key, entry)
            logger.info(f"Unsubscribed from changes on {key}")
        self._entries.clear()

    async def _teardown(self, key: str, entry: ListenerEntry) -> None:
        # A callback may unsubscribe its own listener; its task then ends once
        # the closed feed is exhausted. Only a task waiting on the feed is
        # cancelled; one running a callback finishes it first.
        task = entry.task if entry.task is not asyncio.current_task() else None
        try:
            if entry.feed.cleanup is not None:
                await maybe_await(entry.feed.cleanup())
        except Exception as e:
            logger.warning(
                f"Cleanup failed for change listener {key}: {e}",
                extra={"key": key},
            )
        finally:
            if task is not None and not task.done() and not entry.delivering:
                task.cancel()
            await entry.feed.close()

        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task
