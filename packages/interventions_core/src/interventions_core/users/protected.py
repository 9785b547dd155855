"""
Protected Attributes Manager

Stores per-user attributes outside the user record, one document per
(unique_identifier, namespace). Handlers use it for values that must not be
exposed through the regular user attributes.
"""

import logging
from typing import Any

from interventions_core.contracts.types import PROTECTED_ATTRIBUTES
from interventions_core.storage.base import DataStore, IndexSpec
from interventions_core.storage.helpers import handle_store_error

logger = logging.getLogger(__name__)

UNIQUE_IDENTIFIER_NAMESPACE_INDEX = IndexSpec(
    name="uniq_user_identifier_namespace",
    fields=("unique_identifier", "namespace"),
    unique=True,
)


class ProtectedAttributesManager:
    """Read/write access to protected attribute documents."""

    def __init__(self, store: DataStore):
        self.store = store
        self._initialized = False

    async def init(self) -> None:
        if self._initialized:
            return
        await self.store.init()
        await self.store.ensure_store(PROTECTED_ATTRIBUTES)
        await self.store.ensure_indexes(PROTECTED_ATTRIBUTES, [UNIQUE_IDENTIFIER_NAMESPACE_INDEX])
        self._initialized = True

    def _check_initialization(self) -> None:
        if not self._initialized or not self.store.is_initialized:
            raise RuntimeError("ProtectedAttributesManager has not been initialized")

    async def _get_document(self, unique_identifier: str, namespace: str) -> dict[str, Any] | None:
        self._check_initialization()
        try:
            docs = await self.store.find_items_in_collection(
                PROTECTED_ATTRIBUTES,
                {"unique_identifier": unique_identifier, "namespace": namespace},
            )
        except Exception as e:
            handle_store_error("Failed to get protected attributes document", "_get_document", e)
        return docs[0] if docs else None

    async def get_protected_attributes(
        self, unique_identifier: str, namespace: str, names: list[str]
    ) -> dict[str, Any] | None:
        """
        Get the named attributes.

        Returns:
            Mapping of each requested name to its value (None when unset),
            or None when there is no document for the identifier/namespace
        """
        doc = await self._get_document(unique_identifier, namespace)
        if doc is None:
            return None
        attributes = doc.get("attributes") or {}
        return {name: attributes.get(name) for name in names}

    async def create_protected_attributes(
        self, unique_identifier: str, namespace: str, initial_attributes: dict[str, Any]
    ) -> dict[str, Any] | None:
        self._check_initialization()
        try:
            doc = await self.store.add_item_to_collection(
                PROTECTED_ATTRIBUTES,
                {
                    "unique_identifier": unique_identifier,
                    "namespace": namespace,
                    "attributes": dict(initial_attributes),
                },
            )
        except Exception as e:
            handle_store_error(
                "Failed to create protected attributes", "create_protected_attributes", e
            )
        return doc.get("attributes") if doc else None

    async def override_protected_attributes(
        self, document_id: str, new_attributes: dict[str, Any]
    ) -> dict[str, Any] | None:
        """Replace every attribute on a document. Returns None if it does not exist."""
        self._check_initialization()
        try:
            doc = await self.store.update_item_by_id_in_collection(
                PROTECTED_ATTRIBUTES, document_id, {"attributes": new_attributes}
            )
        except Exception as e:
            handle_store_error(
                "Failed to override protected attributes", "override_protected_attributes", e
            )
        return doc.get("attributes") if doc else None

    async def set_protected_attributes(
        self, unique_identifier: str, namespace: str, update: dict[str, Any]
    ) -> dict[str, Any] | None:
        """
        Merge ``update`` into the stored attributes, creating the document if needed.

        Returns:
            Only the keys that were set, or None if the write failed
        """
        doc = await self._get_document(unique_identifier, namespace)
        if doc is None:
            return await self.create_protected_attributes(unique_identifier, namespace, update)

        merged = {**(doc.get("attributes") or {}), **update}
        result = await self.override_protected_attributes(doc["id"], merged)
        if result is None:
            return None
        return {key: value for key, value in result.items() if key in update}

    async def delete_protected_attributes(
        self, unique_identifier: str, namespace: str, names: list[str]
    ) -> bool:
        """Remove the named attributes. Returns False when there is no document."""
        doc = await self._get_document(unique_identifier, namespace)
        if doc is None:
            return False

        remaining = {
            key: value
            for key, value in (doc.get("attributes") or {}).items()
            if key not in names
        }
        return await self.override_protected_attributes(doc["id"], remaining) is not None

    async def delete_all_for_identifier(self, unique_identifier: str) -> int:
        """Remove every protected document for a user. Returns how many were removed."""
        self._check_initialization()
        try:
            docs = await self.store.find_items_in_collection(
                PROTECTED_ATTRIBUTES, {"unique_identifier": unique_identifier}
            )
            removed = 0
            for doc in docs:
                if await self.store.remove_item_from_collection(PROTECTED_ATTRIBUTES, doc["id"]):
                    removed += 1
        except Exception as e:
            handle_store_error(
                "Failed to delete protected attributes for user", "delete_all_for_identifier", e
            )
        if removed:
            logger.debug(f"Removed {removed} protected attribute document(s) for {unique_identifier}")
        return removed

    async def rename_identifier(self, current: str, new: str) -> int:
        """Move every protected document from ``current`` to ``new``. Returns how many moved."""
        self._check_initialization()
        try:
            docs = await self.store.find_items_in_collection(
                PROTECTED_ATTRIBUTES, {"unique_identifier": current}
            )
            moved = 0
            for doc in docs:
                updated = await self.store.update_item_by_id_in_collection(
                    PROTECTED_ATTRIBUTES, doc["id"], {"unique_identifier": new}
                )
                if updated is not None:
                    moved += 1
        except Exception as e:
            handle_store_error(
                "Failed to rename protected attributes for user", "rename_identifier", e
            )
        return moved
