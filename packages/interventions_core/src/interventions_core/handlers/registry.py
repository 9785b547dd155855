"""
Handler Registry

Maps handler names to Tasks and DecisionRules, and event types to the
ordered list of handler names that run for them.

Tasks and decision rules share one name space: a name belongs to exactly one
handler, so get_handler() never has to choose between kinds.
"""

import logging

from interventions_core.contracts.types import HandlerKind
from interventions_core.handlers.types import DecisionRule, Handler, Task

logger = logging.getLogger(__name__)


class HandlerRegistry:
    """Name -> handler lookup plus event type -> handler name bindings."""

    def __init__(self):
        self._handlers: dict[str, Handler] = {}
        self._bindings: dict[str, list[str]] = {}

    # --- Handlers ---

    def _register(self, handler: Handler) -> None:
        if not handler.name:
            raise ValueError("Handler name must be a non-empty string")

        existing = self._handlers.get(handler.name)
        if existing is not None and existing.kind != handler.kind:
            raise ValueError(
                f"Handler name '{handler.name}' is already registered as a {existing.kind}"
            )
        if existing is not None:
            logger.warning(f"Replacing {handler.kind} '{handler.name}'")

        self._handlers[handler.name] = handler
        logger.debug(f"Registered {handler.kind} '{handler.name}'")

    def register_task(self, task: Task) -> None:
        self._register(task)

    def register_decision_rule(self, rule: DecisionRule) -> None:
        self._register(rule)

    def get_handler(self, name: str) -> Handler | None:
        return self._handlers.get(name)

    def get_task_by_name(self, name: str) -> Task | None:
        handler = self._handlers.get(name)
        return handler if handler is not None and handler.kind == HandlerKind.TASK else None

    def get_decision_rule_by_name(self, name: str) -> DecisionRule | None:
        handler = self._handlers.get(name)
        if handler is not None and handler.kind == HandlerKind.DECISION_RULE:
            return handler
        return None

    # --- Event bindings ---

    def register_event_handlers(
        self,
        event_type: str,
        handler_names: list[str],
        overwrite: bool = False,
    ) -> None:
        """
        Bind an ordered list of handler names to an event type.

        Handlers may be registered after binding; unknown names are skipped
        with a warning at execution time.

        Raises:
            ValueError: If the event type is already bound and overwrite is False
        """
        if not event_type:
            raise ValueError("Event type must be a non-empty string")
        if event_type in self._bindings and not overwrite:
            raise ValueError(f"Handlers for event type '{event_type}' are already registered")

        self._bindings[event_type] = list(handler_names)
        logger.info(
            f"Registered handlers for event type '{event_type}'",
            extra={"handlers": list(handler_names)},
        )

    def unregister_event_handlers(self, event_type: str) -> bool:
        removed = self._bindings.pop(event_type, None)
        return removed is not None

    def get_handlers_for_event_type(self, event_type: str) -> list[str]:
        return list(self._bindings.get(event_type, []))

    def has_handlers_for_event_type(self, event_type: str) -> bool:
        return len(self._bindings.get(event_type, [])) > 0

    def get_registered_events(self) -> list[str]:
        return list(self._bindings)

    def clear(self) -> None:
        self._handlers.clear()
        self._bindings.clear()
