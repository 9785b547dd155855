"""Changes - change feed subscriptions and the in-process change bus."""

from interventions_core.changes.listener import (
    ChangeEventBus,
    ChangeListenerManager,
    listener_key,
)

__all__ = ["ChangeEventBus", "ChangeListenerManager", "listener_key"]
