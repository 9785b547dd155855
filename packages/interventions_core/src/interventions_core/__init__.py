"""
Interventions Core - event-triggered intervention runtime

Hosts register tasks and decision rules, bind them in order to event types,
and the engine evaluates them against every user whenever a matching event is
published or arrives through the durable event queue.

It provides:
- Contracts (events, users, result records, change notifications)
- A data store interface with in-memory and Redis backends
- Change feed subscriptions and a cached user set kept current by them
- The handler registry, per-user execution and result recording
- The event executor, the durable event queue and interval timers
- InterventionEngine (store-backed) and LiteEngine (in-memory) facades
"""

from interventions_core.contracts import Event, NewUserRecord, ResultRecord, User
from interventions_core.engine import InterventionEngine
from interventions_core.handlers import DecisionRule, Task
from interventions_core.lite import LiteEngine

__all__ = [
    "DecisionRule",
    "Event",
    "InterventionEngine",
    "LiteEngine",
    "NewUserRecord",
    "ResultRecord",
    "Task",
    "User",
]
