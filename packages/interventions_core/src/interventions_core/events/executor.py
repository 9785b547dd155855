"""
Event Executor

Runs the handlers bound to an event's type against a list of users.

For each handler, in binding order:
1. before_execution(event), at most once per call
2. the handler's execution entry point once per user, in list order
3. after_execution(event), at most once per call

A name bound twice runs its users twice but its hooks only once.

Errors are logged and isolated to the hook or user that raised them; every
handler and every user is still attempted.
"""

import logging

from interventions_core.contracts.event import Event
from interventions_core.contracts.user import User
from interventions_core.handlers.execution import execute_handler
from interventions_core.handlers.recorder import ResultRecorder
from interventions_core.handlers.registry import HandlerRegistry
from interventions_core.handlers.types import EventHook
from interventions_core.utils import maybe_await

logger = logging.getLogger(__name__)


async def _run_hook(hook: EventHook | None, hook_name: str, handler_name: str, event: Event) -> None:
    if hook is None:
        return
    try:
        await maybe_await(hook(event))
    except Exception as e:
        logger.error(
            f"{hook_name} error for '{handler_name}' on event '{event.event_type}': {e}",
            extra={"handler": handler_name, "event_type": event.event_type},
            exc_info=True,
        )


async def execute_event_for_users(
    event: Event,
    users: list[User],
    registry: HandlerRegistry,
    recorder: ResultRecorder | None = None,
) -> None:
    """
    Execute an event against users.

    Args:
        event: Event to execute
        users: Users to run each handler for, in order
        registry: Where handler bindings and handlers are looked up
        recorder: Receives each execution's ResultRecord
    """
    handler_names = registry.get_handlers_for_event_type(event.event_type)
    if not handler_names:
        logger.warning(f"No handlers registered for event type '{event.event_type}'")
        return

    before_ran: set[str] = set()
    after_ran: set[str] = set()

    for handler_name in handler_names:
        handler = registry.get_handler(handler_name)

        if handler_name not in before_ran:
            before_ran.add(handler_name)
            await _run_hook(
                handler.before_execution if handler else None,
                "before_execution",
                handler_name,
                event,
            )

        for user in users:
            if handler is None:
                logger.warning(f"Handler '{handler_name}' not found; skipping")
                continue
            try:
                await execute_handler(handler, event, user, recorder)
            except Exception as e:
                logger.error(
                    f"Execution error for '{handler_name}' on user '{user.unique_identifier}' "
                    f"(event '{event.event_type}'): {e}",
                    extra={
                        "handler": handler_name,
                        "user": user.unique_identifier,
                        "event_type": event.event_type,
                    },
                    exc_info=True,
                )

        if handler_name not in after_ran:
            after_ran.add(handler_name)
            await _run_hook(
                handler.after_execution if handler else None,
                "after_execution",
                handler_name,
                event,
            )
