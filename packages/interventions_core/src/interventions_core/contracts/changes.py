"""
Change notifications emitted by collection change feeds.
"""

from dataclasses import dataclass
from typing import Any

from interventions_core.contracts.types import ChangeType


@dataclass(frozen=True)
class ChangeNotification:
    """
    One mutation of a stored collection.

    Attributes:
        collection: Collection that changed
        change_type: insert, update or delete
        record_id: ID of the affected record
        document: Full record after the change (None for deletes)
    """

    collection: str
    change_type: ChangeType
    record_id: str
    document: dict[str, Any] | None = None

    @property
    def payload(self) -> dict[str, Any]:
        """Full changed record for inserts/updates, ``{"id": ...}`` for deletes."""
        if self.change_type == ChangeType.DELETE or self.document is None:
            return {"id": self.record_id}
        return self.document
