"""
Shared enums and collection names.
"""

from enum import Enum


class ChangeType(str, Enum):
    """Kinds of mutation reported by a collection change feed."""

    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"

    def __str__(self) -> str:
        return self.value


class HandlerKind(str, Enum):
    """Kinds of handler that can be bound to an event type."""

    TASK = "task"
    DECISION_RULE = "decision_rule"

    def __str__(self) -> str:
        return self.value


# Collection names
USERS = "users"
PROTECTED_ATTRIBUTES = "protected_attributes"
EVENT_QUEUE = "event_queue"
ARCHIVED_EVENTS = "archived_events"
TASK_RESULTS = "task_results"
DECISION_RULE_RESULTS = "decision_rule_results"
