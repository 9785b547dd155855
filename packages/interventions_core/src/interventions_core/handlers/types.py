"""
Handler types - the two kinds of handler bound to event types.

A Task checks should_activate and then runs do_action. A DecisionRule checks
should_activate, picks an action with select_action and runs do_action with
it. Every hook may be a plain function or a coroutine function.

Step outcomes are arbitrary values; a ``{"status": ..., "result": ...}``
mapping is the conventional shape (see step_succeeded()).
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Union

from interventions_core.contracts.event import Event
from interventions_core.contracts.types import HandlerKind
from interventions_core.contracts.user import User

Outcome = Union[Any, Awaitable[Any]]
UserStep = Callable[[Event, User], Outcome]
EventHook = Callable[[Event], Outcome]


def step_succeeded(outcome: Any) -> bool:
    """
    Decide whether a step allows the next one to run.

    Mappings need ``status == "success"`` and a truthy ``result``; any other
    value is judged by its truthiness.
    """
    if isinstance(outcome, dict):
        return outcome.get("status") == "success" and bool(outcome.get("result"))
    return bool(outcome)


@dataclass
class Task:
    """A handler that acts when its activation check passes."""

    name: str
    should_activate: UserStep
    do_action: UserStep
    before_execution: EventHook | None = None
    after_execution: EventHook | None = None

    @property
    def kind(self) -> HandlerKind:
        return HandlerKind.TASK


@dataclass
class DecisionRule:
    """A handler that selects one action and then performs it."""

    name: str
    should_activate: UserStep
    select_action: UserStep
    do_action: Callable[[Event, User, Any], Outcome]
    before_execution: EventHook | None = None
    after_execution: EventHook | None = None

    @property
    def kind(self) -> HandlerKind:
        return HandlerKind.DECISION_RULE


Handler = Union[Task, DecisionRule]
