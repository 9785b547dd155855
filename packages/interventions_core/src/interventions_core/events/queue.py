"""
Event Queue

Durable backlog of published events.

- publish_event() writes to the event_queue collection (only when handlers
  are bound to the event type)
- An insert listener on event_queue wakes process_event_queue()
- process_event_queue() is single-flight: while one drain runs, other calls
  return immediately. A drain reads the whole backlog, executes each event
  against all cached users, then archives it, and repeats until the backlog
  is empty
- An event leaves event_queue only after its archive copy is written. Events
  that fail to archive stay queued and run again on the next drain, so
  handlers must be idempotent

One process drains a given store. Running several workers against the same
store executes events more than once.
"""

import logging
from datetime import datetime
from typing import Any

from interventions_core.changes.listener import ChangeListenerManager
from interventions_core.contracts.event import Event, utcnow
from interventions_core.contracts.types import ARCHIVED_EVENTS, EVENT_QUEUE, ChangeType
from interventions_core.events.executor import execute_event_for_users
from interventions_core.handlers.recorder import ResultRecorder
from interventions_core.handlers.registry import HandlerRegistry
from interventions_core.storage.base import DataStore
from interventions_core.users.manager import UserManager

logger = logging.getLogger(__name__)


class EventQueue:
    """
    Publishes, drains and archives events for one data store.

    Usage:
        queue = EventQueue(store, listeners, registry, users, recorder)
        await queue.start_event_queue_processing()
        await queue.publish_event("ORDER_PLACED", utcnow(), {"order_id": "o1"})
    """

    def __init__(
        self,
        store: DataStore,
        listeners: ChangeListenerManager,
        registry: HandlerRegistry,
        users: UserManager,
        recorder: ResultRecorder | None = None,
    ):
        self.store = store
        self.listeners = listeners
        self.registry = registry
        self.users = users
        self.recorder = recorder
        self._should_process = True
        self._is_processing = False

    # --- Flags ---

    def is_running(self) -> bool:
        return self._should_process

    def is_processing(self) -> bool:
        return self._is_processing

    def set_should_process_queue(self, should_process: bool) -> None:
        self._should_process = should_process

    async def queue_is_empty(self) -> bool:
        return await self.store.is_collection_empty(EVENT_QUEUE)

    # --- Publish ---

    async def publish_event(
        self,
        event_type: str,
        generated_timestamp: datetime,
        event_details: dict[str, Any] | None = None,
    ) -> Event | None:
        """
        Add an event to the queue.

        Returns:
            The queued event, or None if no handlers are bound to event_type

        Raises:
            StoreError: If the write fails
        """
        if not self.registry.has_handlers_for_event_type(event_type):
            logger.warning(
                f"No handlers found for event type '{event_type}'. Skipping event publication."
            )
            return None

        event = Event(
            event_type=event_type,
            generated_timestamp=generated_timestamp,
            published_timestamp=utcnow(),
            event_details=event_details or {},
        )
        try:
            doc = await self.store.add_item_to_collection(EVENT_QUEUE, event.to_dict())
        except Exception as e:
            logger.error(
                f"Failed to publish event '{event_type}': {e}",
                extra={"event_type": event_type},
            )
            raise

        queued = Event.from_dict(doc)
        logger.info(
            f"Published event '{event_type}' with ID: {queued.id}",
            extra={"event_id": queued.id, "event_type": event_type},
        )
        return queued

    # --- Drain ---

    async def process_event_queue(self) -> None:
        """Drain the backlog. Returns at once if a drain is already running."""
        if self._is_processing:
            logger.info("Event queue processing already in progress. Skipping processing.")
            return

        self._is_processing = True
        try:
            await self._drain()
        except Exception as e:
            logger.error(f"Error during event queue processing: {e}", exc_info=True)
        finally:
            self._is_processing = False

    async def _drain(self) -> None:
        logger.debug("Starting event queue processing")
        # Events whose archive write failed wait for the next drain
        retained: set[str] = set()

        while self._should_process:
            users = self.users.get_all_users()
            docs = await self.store.get_all_in_collection(EVENT_QUEUE)
            events = [
                Event.from_dict(doc)
                for doc in docs
                if doc.get("id") not in retained
            ]

            if not events:
                logger.debug("No events left in the queue. Pausing processing.")
                break

            for event in events:
                if not self._should_process:
                    break

                logger.debug(
                    f"Processing event '{event.event_type}' with ID: {event.id} "
                    f"for {len(users)} user(s)"
                )
                await execute_event_for_users(event, users, self.registry, self.recorder)

                try:
                    archived = await self.archive_event(event)
                except Exception as e:
                    archived = False
                    logger.error(
                        f"Failed to archive event '{event.event_type}' with ID: {event.id}: {e}",
                        extra={"event_id": event.id},
                    )
                if not archived:
                    retained.add(event.id)

        logger.debug("Finished processing event queue")

    async def archive_event(self, event: Event) -> bool:
        """
        Copy an event to the archive, then remove it from the queue.

        Returns:
            True if the event left the queue, False if it has no ID

        Raises:
            StoreError: If either write fails
        """
        await self.store.add_item_to_collection(
            ARCHIVED_EVENTS,
            {**event.to_dict(), "queued_id": event.id, "archived_timestamp": utcnow()},
        )

        if not event.id:
            logger.error(f"Event '{event.event_type}' has no ID. It stays in the queue.")
            return False

        await self.store.remove_item_from_collection(EVENT_QUEUE, event.id)
        logger.debug(f"Event '{event.event_type}' with ID: {event.id} archived")
        return True

    # --- Listener ---

    async def _on_event_inserted(self, payload: dict[str, Any]) -> None:
        if self._should_process:
            logger.debug("New event detected in event queue. Triggering processing.")
            await self.process_event_queue()

    async def setup_event_queue_listener(self) -> None:
        """Wake the drain on every queue insert, then drain once."""
        if self.listeners.has(EVENT_QUEUE, ChangeType.INSERT):
            logger.info("Event queue listener already set up. Skipping setup.")
            return

        await self.listeners.subscribe(EVENT_QUEUE, ChangeType.INSERT, self._on_event_inserted)
        await self.process_event_queue()
        logger.debug("Event queue listener set up")

    async def start_event_queue_processing(self) -> None:
        self._should_process = True
        await self.setup_event_queue_listener()
        logger.info("Event queue processing started")

    async def stop_event_queue_processing(self) -> None:
        self._should_process = False
        if self.listeners.has(EVENT_QUEUE, ChangeType.INSERT):
            await self.listeners.unsubscribe(EVENT_QUEUE, ChangeType.INSERT)
        logger.info("Event queue processing stopped")
