"""
Event - a published occurrence that bound handlers are evaluated against.

Events are written to the queue collection on publish, are immutable while
queued, and are moved to the archive collection once processed.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


@dataclass
class Event:
    """
    Event record.

    Attributes:
        event_type: Type of event, used to look up the bound handlers
        generated_timestamp: When the event happened at its source
        event_details: Free-form payload available to handlers
        published_timestamp: When the event entered the queue (None if it
            was executed directly without queueing)
        id: Storage-assigned ID once queued
    """

    event_type: str
    generated_timestamp: datetime
    event_details: dict[str, Any] = field(default_factory=dict)
    published_timestamp: datetime | None = None
    id: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Event":
        """Create an Event from a stored document."""
        return cls(
            event_type=data["event_type"],
            generated_timestamp=_parse_timestamp(data["generated_timestamp"]),
            event_details=data.get("event_details") or {},
            published_timestamp=_parse_timestamp(data.get("published_timestamp")),
            id=data.get("id"),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to a storable document (without the id)."""
        return {
            "event_type": self.event_type,
            "generated_timestamp": self.generated_timestamp,
            "published_timestamp": self.published_timestamp,
            "event_details": self.event_details,
        }
