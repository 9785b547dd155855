"""
Lite Engine

Storage-free runtime for serverless and embedded use: users live in memory,
publish_event() executes immediately instead of queueing, and the result
recorder has persistence disabled so only overrides and the debug log
receive results.
"""

import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from interventions_core.contracts.event import Event
from interventions_core.contracts.user import NewUserRecord, User
from interventions_core.events.executor import execute_event_for_users
from interventions_core.handlers.recorder import RecordResultFunction, ResultRecorder
from interventions_core.handlers.registry import HandlerRegistry
from interventions_core.handlers.types import DecisionRule, Task

logger = logging.getLogger(__name__)


def _normalize_user(item: Any, index: int) -> User:
    if isinstance(item, User):
        unique_identifier, attributes, user_id = item.unique_identifier, item.attributes, item.id
    elif isinstance(item, NewUserRecord):
        unique_identifier, attributes, user_id = item.unique_identifier, item.initial_attributes, None
    elif isinstance(item, Mapping):
        unique_identifier = item.get("unique_identifier")
        if "attributes" in item:
            attributes = item.get("attributes")
        else:
            attributes = item.get("initial_attributes")
        user_id = item.get("id")
    else:
        raise ValueError(f"load_users: item at index {index} is not a user record")

    unique_identifier = unique_identifier.strip() if isinstance(unique_identifier, str) else ""
    if not unique_identifier:
        raise ValueError(f"load_users: item at index {index} is missing 'unique_identifier'")

    return User(
        id=user_id if isinstance(user_id, str) and user_id else unique_identifier,
        unique_identifier=unique_identifier,
        attributes=dict(attributes or {}),
    )


class LiteEngine:
    """In-memory facade; never creates or contacts a data store."""

    def __init__(self):
        self.registry = HandlerRegistry()
        self.recorder = ResultRecorder(persistence_enabled=False)
        self._users: dict[str, User] = {}
        self._processed_keys: set[str] = set()

    # --- Users ---

    def load_users(self, items: list[User | NewUserRecord | Mapping[str, Any]]) -> list[User]:
        """
        Replace the loaded users with ``items``.

        The previous set is kept if any item is invalid.

        Raises:
            ValueError: On a non-list input, a missing identifier or a duplicate
        """
        if not isinstance(items, (list, tuple)):
            raise ValueError("load_users expects a list")

        loaded: dict[str, User] = {}
        for index, item in enumerate(items):
            user = _normalize_user(item, index)
            if user.unique_identifier in loaded:
                message = (
                    f"load_users: duplicate unique_identifier '{user.unique_identifier}' "
                    f"(again at index {index})"
                )
                logger.error(message)
                raise ValueError(message)
            loaded[user.unique_identifier] = user

        self._users = loaded
        logger.info(f"Loaded {len(loaded)} user(s) in memory, replacing the previous set")
        return list(loaded.values())

    def get_all_users(self) -> list[User]:
        return list(self._users.values())

    # --- Registration ---

    def register_task(self, task: Task) -> None:
        self.registry.register_task(task)

    def register_decision_rule(self, rule: DecisionRule) -> None:
        self.registry.register_decision_rule(rule)

    def register_event_handlers(self, event_type: str, handler_names: list[str]) -> None:
        self.registry.register_event_handlers(event_type, handler_names)

    def unregister_event_handlers(self, event_type: str) -> None:
        self.registry.unregister_event_handlers(event_type)

    def get_registered_events(self) -> dict[str, list[str]]:
        return {
            event_type: self.registry.get_handlers_for_event_type(event_type)
            for event_type in self.registry.get_registered_events()
        }

    def configure_task_result_writer(self, fn: RecordResultFunction | None) -> None:
        self.recorder.set_task_result_recorder(fn)

    def configure_decision_rule_result_writer(self, fn: RecordResultFunction | None) -> None:
        self.recorder.set_decision_rule_result_recorder(fn)

    # --- Execution ---

    async def publish_event(
        self,
        event_type: str,
        generated_timestamp: datetime,
        event_details: dict[str, Any] | None = None,
        idempotency_key: str | None = None,
    ) -> bool:
        """
        Execute an event against the loaded users right away.

        Returns:
            False if ``idempotency_key`` was already seen, True otherwise

        Raises:
            ValueError: If no handlers are bound to event_type
            RuntimeError: If no users are loaded
        """
        if idempotency_key:
            if idempotency_key in self._processed_keys:
                logger.warning(f"Duplicate execution skipped for key: {idempotency_key}")
                return False
            self._processed_keys.add(idempotency_key)

        if not self.registry.has_handlers_for_event_type(event_type):
            raise ValueError(f"No handlers registered for event type '{event_type}'")

        users = self.get_all_users()
        if not users:
            raise RuntimeError("publish_event called with no users loaded")

        event = Event(
            event_type=event_type,
            generated_timestamp=generated_timestamp,
            event_details=event_details or {},
        )
        await execute_event_for_users(event, users, self.registry, self.recorder)
        return True

    def reset(self) -> None:
        """Forget users, handlers, bindings and idempotency keys."""
        self._processed_keys.clear()
        self._users.clear()
        self.registry.clear()
        self.recorder.reset()
        self.recorder.set_persistence_enabled(False)
