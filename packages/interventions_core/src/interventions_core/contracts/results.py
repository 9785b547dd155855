"""
Result records produced by one handler execution for one user.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from interventions_core.contracts.event import utcnow


@dataclass
class ResultStep:
    """Outcome of a single handler step (should_activate, do_action, ...)."""

    step: str
    result: Any
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {"step": self.step, "result": self.result, "timestamp": self.timestamp}


@dataclass
class ResultRecord:
    """
    Everything worth recording about one execution.

    An empty ``steps`` list means nothing happened that should be stored.
    """

    name: str
    event: dict[str, Any]
    user: dict[str, Any]
    steps: list[ResultStep] = field(default_factory=list)

    def add_step(self, step: str, result: Any) -> ResultStep:
        entry = ResultStep(step=step, result=result)
        self.steps.append(entry)
        return entry

    def has_steps(self) -> bool:
        return len(self.steps) > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "event": self.event,
            "user": self.user,
            "steps": [step.to_dict() for step in self.steps],
        }
