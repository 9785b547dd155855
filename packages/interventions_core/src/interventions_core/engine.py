"""
Intervention Engine

Wires one data store to the change listener manager, user cache, handler
registry, result recorder and event queue, and exposes the host-facing API.

Usage:
    engine = InterventionEngine()
    engine.register_task(Task("nudge", should_activate, do_action))
    engine.register_event_handlers("DAILY_CHECK", ["nudge"])
    await engine.init()
    await engine.start_engine()
    ...
    await engine.shutdown()
"""

import logging
from datetime import datetime
from typing import Any

from basecore.settings import Settings, get_settings
from interventions_core.changes.listener import ChangeListenerManager
from interventions_core.contracts.event import Event
from interventions_core.contracts.user import NewUserRecord, User
from interventions_core.events.queue import EventQueue
from interventions_core.events.timer import DetailsFactory, IntervalTimerEventGenerator
from interventions_core.handlers.recorder import RecordResultFunction, ResultRecorder
from interventions_core.handlers.registry import HandlerRegistry
from interventions_core.handlers.types import DecisionRule, Task
from interventions_core.storage import DataStore, create_data_store
from interventions_core.users.manager import UserManager
from interventions_core.users.protected import ProtectedAttributesManager

logger = logging.getLogger(__name__)


class InterventionEngine:
    """Host-facing facade for the full (store-backed) runtime."""

    def __init__(self, store: DataStore | None = None, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self.store = store or create_data_store(self.settings)
        self.listeners = ChangeListenerManager(self.store)
        self.registry = HandlerRegistry()
        self.recorder = ResultRecorder(
            store_provider=lambda: self.store,
            persistence_enabled=self.settings.RESULT_PERSISTENCE_ENABLED,
        )
        self.protected = ProtectedAttributesManager(self.store)
        self.users = UserManager(self.store, self.listeners, self.protected)
        self.queue = EventQueue(
            self.store, self.listeners, self.registry, self.users, self.recorder
        )
        self.timers: dict[str, IntervalTimerEventGenerator] = {}
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    # --- Lifecycle ---

    async def init(self) -> None:
        if self._initialized:
            logger.warning("Intervention engine is already initialized")
            return
        await self.store.init()
        await self.users.init()
        self._initialized = True
        logger.info("Intervention engine initialized")

    async def start_engine(self) -> None:
        """Start draining the queue and start every interval timer."""
        await self.queue.start_event_queue_processing()
        for event_type, timer in self.timers.items():
            logger.info(f"Starting interval timer event generator for event type: {event_type}")
            timer.start()
        logger.info("Engine started")

    async def stop_engine(self) -> None:
        for event_type, timer in self.timers.items():
            logger.info(f"Stopping interval timer event generator for event type: {event_type}")
            await timer.stop()
        await self.queue.stop_event_queue_processing()
        logger.info("Engine stopped")

    async def shutdown(self) -> None:
        """
        Release everything the engine opened.

        Each step runs even when an earlier one fails; failures are logged.
        """
        if not self._initialized:
            logger.warning("Intervention engine is not initialized")
            return

        steps = [
            ("stop engine", self.stop_engine),
            ("shut down users", self.users.shutdown),
            ("remove change listeners", self.listeners.unsubscribe_all),
            ("close data store", self.store.close),
        ]
        for label, step in steps:
            try:
                await step()
            except Exception as e:
                logger.warning(f"Failed to {label} during shutdown: {e}", exc_info=True)

        self.timers.clear()
        self.registry.clear()
        self._initialized = False
        logger.info("Intervention engine shut down")

    # --- Registration ---

    def register_task(self, task: Task) -> None:
        self.registry.register_task(task)

    def register_decision_rule(self, rule: DecisionRule) -> None:
        self.registry.register_decision_rule(rule)

    def register_event_handlers(
        self, event_type: str, handler_names: list[str], overwrite: bool = False
    ) -> None:
        self.registry.register_event_handlers(event_type, handler_names, overwrite=overwrite)

    def unregister_event_handlers(self, event_type: str) -> None:
        self.registry.unregister_event_handlers(event_type)

    def create_interval_timer_event_generator(
        self,
        event_type: str,
        interval_seconds: float,
        generate_details: DetailsFactory | None = None,
    ) -> IntervalTimerEventGenerator:
        """Create a timer that starts and stops with the engine."""
        timer = IntervalTimerEventGenerator(
            self.queue, event_type, interval_seconds, generate_details
        )
        self.timers[event_type] = timer
        return timer

    def configure_task_result_writer(self, fn: RecordResultFunction | None) -> None:
        self.recorder.set_task_result_recorder(fn)

    def configure_decision_rule_result_writer(self, fn: RecordResultFunction | None) -> None:
        self.recorder.set_decision_rule_result_recorder(fn)

    # --- Events ---

    async def publish_event(
        self,
        event_type: str,
        generated_timestamp: datetime,
        event_details: dict[str, Any] | None = None,
    ) -> Event | None:
        return await self.queue.publish_event(event_type, generated_timestamp, event_details)

    # --- Users ---

    async def add_user(self, record: NewUserRecord | dict[str, Any]) -> User | None:
        return await self.users.add_user(record)

    async def add_users(self, records: list[NewUserRecord | dict[str, Any]]) -> list[User]:
        return await self.users.add_users(records)

    def get_all_users(self) -> list[User]:
        return self.users.get_all_users()

    def get_user(self, unique_identifier: str) -> User | None:
        return self.users.get_user_by_unique_identifier(unique_identifier)

    async def update_user(self, unique_identifier: str, attributes: dict[str, Any]) -> User:
        return await self.users.update_user_by_unique_identifier(unique_identifier, attributes)

    async def delete_user(self, unique_identifier: str) -> bool:
        return await self.users.delete_user_by_unique_identifier(unique_identifier)
