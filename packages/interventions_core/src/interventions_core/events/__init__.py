"""Events - orchestration, the durable queue and timer-driven publishing."""

from interventions_core.events.executor import execute_event_for_users
from interventions_core.events.queue import EventQueue
from interventions_core.events.timer import IntervalTimerEventGenerator

__all__ = ["EventQueue", "IntervalTimerEventGenerator", "execute_event_for_users"]
