"""Handlers - tasks, decision rules, their registry and result recording."""

from interventions_core.handlers.execution import (
    execute_decision_rule,
    execute_handler,
    execute_task,
)
from interventions_core.handlers.recorder import ResultRecorder
from interventions_core.handlers.registry import HandlerRegistry
from interventions_core.handlers.types import DecisionRule, Handler, Task, step_succeeded

__all__ = [
    "DecisionRule",
    "Handler",
    "HandlerRegistry",
    "ResultRecorder",
    "Task",
    "execute_decision_rule",
    "execute_handler",
    "execute_task",
    "step_succeeded",
]
