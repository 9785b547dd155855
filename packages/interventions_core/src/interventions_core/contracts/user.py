"""
User records.

``id`` is assigned by storage; ``unique_identifier`` is the caller-chosen
business key and must be unique across users.
"""

from dataclasses import dataclass, field
from typing import Any


@dataclass
class User:
    """A user known to the engine."""

    id: str
    unique_identifier: str
    attributes: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "User":
        return cls(
            id=data["id"],
            unique_identifier=data["unique_identifier"],
            attributes=dict(data.get("attributes") or {}),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "unique_identifier": self.unique_identifier,
            "attributes": self.attributes,
        }


@dataclass
class NewUserRecord:
    """Input for creating a user."""

    unique_identifier: str
    initial_attributes: dict[str, Any] = field(default_factory=dict)
