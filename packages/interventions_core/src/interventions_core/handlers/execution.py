"""
Per-user execution of a single handler.

Each step outcome is timestamped into a ResultRecord, which is handed to the
ResultRecorder once the run ends. A step that raises is recorded as an error
step, the record is still handed over, and the exception propagates.
"""

import logging
from typing import Any

from interventions_core.contracts.event import Event
from interventions_core.contracts.results import ResultRecord
from interventions_core.contracts.user import User
from interventions_core.handlers.recorder import ResultRecorder
from interventions_core.handlers.types import DecisionRule, Handler, Task, step_succeeded
from interventions_core.utils import maybe_await

logger = logging.getLogger(__name__)


def _new_record(handler: Handler, event: Event, user: User) -> ResultRecord:
    return ResultRecord(
        name=handler.name,
        event={**event.to_dict(), "id": event.id},
        user=user.to_dict(),
    )


async def _run_step(record: ResultRecord, step: str, fn, *args) -> Any:
    try:
        outcome = await maybe_await(fn(*args))
    except Exception as e:
        record.add_step(step, {"status": "error", "error": str(e)})
        raise
    record.add_step(step, outcome)
    return outcome


async def execute_task(
    task: Task,
    event: Event,
    user: User,
    recorder: ResultRecorder | None = None,
) -> ResultRecord:
    """
    Run should_activate and, when it succeeds, do_action.

    Returns:
        The ResultRecord for this run
    """
    record = _new_record(task, event, user)
    try:
        activation = await _run_step(record, "should_activate", task.should_activate, event, user)
        if step_succeeded(activation):
            await _run_step(record, "do_action", task.do_action, event, user)
        else:
            logger.debug(f"Task '{task.name}' not activated for {user.unique_identifier}")
    finally:
        if recorder is not None:
            await recorder.handle_task_result(record)
    return record


async def execute_decision_rule(
    rule: DecisionRule,
    event: Event,
    user: User,
    recorder: ResultRecorder | None = None,
) -> ResultRecord:
    """
    Run should_activate, then select_action, then do_action with the
    selected action. Each step runs only when the previous one succeeded.

    Returns:
        The ResultRecord for this run
    """
    record = _new_record(rule, event, user)
    try:
        activation = await _run_step(record, "should_activate", rule.should_activate, event, user)
        if not step_succeeded(activation):
            logger.debug(f"Decision rule '{rule.name}' not activated for {user.unique_identifier}")
            return record

        selection = await _run_step(record, "select_action", rule.select_action, event, user)
        if not step_succeeded(selection):
            logger.debug(f"Decision rule '{rule.name}' selected no action for {user.unique_identifier}")
            return record

        action = selection.get("result") if isinstance(selection, dict) else selection
        await _run_step(record, "do_action", rule.do_action, event, user, action)
    finally:
        if recorder is not None:
            await recorder.handle_decision_rule_result(record)
    return record


async def execute_handler(
    handler: Handler,
    event: Event,
    user: User,
    recorder: ResultRecorder | None = None,
) -> ResultRecord:
    """Dispatch to the execution entry point for the handler's kind."""
    if isinstance(handler, Task):
        return await execute_task(handler, event, user, recorder)
    return await execute_decision_rule(handler, event, user, recorder)
