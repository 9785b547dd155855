"""Contracts - records, enums and collection names shared by every component."""

from interventions_core.contracts.changes import ChangeNotification
from interventions_core.contracts.event import Event
from interventions_core.contracts.results import ResultRecord, ResultStep
from interventions_core.contracts.types import ChangeType, HandlerKind
from interventions_core.contracts.user import NewUserRecord, User

__all__ = [
    "ChangeNotification",
    "ChangeType",
    "Event",
    "HandlerKind",
    "NewUserRecord",
    "ResultRecord",
    "ResultStep",
    "User",
]
