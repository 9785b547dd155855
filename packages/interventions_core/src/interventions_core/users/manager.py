"""
User Manager

In-memory cache of the users collection.

- init() loads every stored user, keyed by storage id
- Insert/update/delete change feeds keep the cache current afterwards
- Writes go to storage first; the cache is updated from the stored result
- Add paths skip invalid or duplicate input (warning + None); update,
  rename and delete paths raise
"""

import logging
from collections.abc import Mapping
from typing import Any

from interventions_core.changes.listener import ChangeListenerManager
from interventions_core.contracts.types import USERS, ChangeType
from interventions_core.contracts.user import NewUserRecord, User
from interventions_core.storage.base import DataStore, IndexSpec
from interventions_core.storage.helpers import handle_store_error
from interventions_core.users.protected import ProtectedAttributesManager

logger = logging.getLogger(__name__)

UNIQUE_IDENTIFIER_INDEX = IndexSpec(
    name="uniq_user_identifier",
    fields=("unique_identifier",),
    unique=True,
)


class UserNotFoundError(LookupError):
    """No user matches the given id or unique identifier."""


def _is_blank(value: Any) -> bool:
    return not isinstance(value, str) or value.strip() == ""


class UserManager:
    """
    Cached access to users.

    Usage:
        users = UserManager(store, listeners)
        await users.init()
        await users.add_user(NewUserRecord("alice", {"tz": "UTC"}))
        ...
        await users.shutdown()
    """

    def __init__(
        self,
        store: DataStore,
        listeners: ChangeListenerManager,
        protected: ProtectedAttributesManager | None = None,
    ):
        self.store = store
        self.listeners = listeners
        self.protected = protected
        self._users: dict[str, User] = {}
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def _check_initialization(self) -> None:
        if not self._initialized:
            raise RuntimeError("UserManager has not been initialized")

    # --- Lifecycle ---

    async def init(self) -> None:
        """Load the cache and start following user changes. Safe to call twice."""
        await self.store.init()
        await self.store.ensure_store(USERS)
        await self.store.ensure_indexes(USERS, [UNIQUE_IDENTIFIER_INDEX])
        if self.protected is not None:
            await self.protected.init()

        self._initialized = True
        await self.refresh_cache()
        await self._setup_change_listeners()
        logger.info(f"User manager initialized with {len(self._users)} user(s)")

    async def shutdown(self) -> None:
        for change_type in (ChangeType.INSERT, ChangeType.UPDATE, ChangeType.DELETE):
            if self.listeners.has(USERS, change_type):
                await self.listeners.unsubscribe(USERS, change_type)
        self._initialized = False

    async def refresh_cache(self) -> None:
        """Replace the cache with a full read of the users collection."""
        self._check_initialization()
        docs = await self.store.get_all_in_collection(USERS)
        self._users.clear()
        for doc in docs:
            self._users[doc["id"]] = User.from_dict(doc)

    async def _setup_change_listeners(self) -> None:
        await self.listeners.subscribe(USERS, ChangeType.INSERT, self._on_user_upserted)
        await self.listeners.subscribe(USERS, ChangeType.UPDATE, self._on_user_upserted)
        await self.listeners.subscribe(USERS, ChangeType.DELETE, self._on_user_deleted)

    def _on_user_upserted(self, payload: dict[str, Any]) -> None:
        user = User.from_dict(payload)
        self._users[user.id] = user

    def _on_user_deleted(self, payload: dict[str, Any]) -> None:
        self._users.pop(payload["id"], None)

    # --- Reads ---

    def get_all_users(self) -> list[User]:
        self._check_initialization()
        return list(self._users.values())

    def get_user_by_unique_identifier(self, unique_identifier: str) -> User | None:
        self._check_initialization()
        for user in self._users.values():
            if user.unique_identifier == unique_identifier:
                return user
        return None

    def is_identifier_unique(self, unique_identifier: str) -> bool:
        """
        Check that no cached user has this identifier.

        Raises:
            ValueError: If the identifier is blank or not a string
        """
        if _is_blank(unique_identifier):
            raise ValueError(f"Invalid unique identifier: {unique_identifier!r}")

        if self.get_user_by_unique_identifier(unique_identifier) is not None:
            logger.debug(f"User with unique identifier ({unique_identifier}) already exists")
            return False
        return True

    # --- Add ---

    async def add_user(self, record: NewUserRecord | Mapping[str, Any]) -> User | None:
        """
        Add one user.

        Args:
            record: NewUserRecord, or a mapping with ``unique_identifier`` and
                optional ``initial_attributes``

        Returns:
            The stored user, or None if the input was invalid or the
            identifier is already taken

        Raises:
            StoreError: If the write fails
        """
        self._check_initialization()

        if isinstance(record, NewUserRecord):
            unique_identifier = record.unique_identifier
            initial_attributes = record.initial_attributes
        elif isinstance(record, Mapping):
            unique_identifier = record.get("unique_identifier")
            initial_attributes = record.get("initial_attributes")
        else:
            logger.warning(f"Invalid user data: {record!r}. It must be a mapping or NewUserRecord")
            return None

        if _is_blank(unique_identifier):
            logger.warning("unique_identifier is missing")
            return None

        if not self.is_identifier_unique(unique_identifier):
            logger.warning(
                f"User's unique identifier already exists. Skipping insertion: {unique_identifier}"
            )
            return None

        try:
            doc = await self.store.add_item_to_collection(
                USERS,
                {
                    "unique_identifier": unique_identifier,
                    "attributes": dict(initial_attributes or {}),
                },
            )
        except Exception as e:
            handle_store_error("Failed to add user", "add_user", e)

        user = User.from_dict(doc)
        self._users[user.id] = user
        logger.info(f"Added user: {unique_identifier}", extra={"user_id": user.id})
        return user

    async def add_users(self, records: list[NewUserRecord | Mapping[str, Any]]) -> list[User]:
        """
        Add users one at a time, skipping invalid and duplicate entries.

        Raises:
            ValueError: If ``records`` is not a non-empty list
        """
        if not isinstance(records, (list, tuple)) or len(records) == 0:
            raise ValueError("No users provided for insertion")

        added = []
        for record in records:
            user = await self.add_user(record)
            if user is not None:
                added.append(user)

        if added:
            logger.info(f"{len(added)} user(s) added successfully")
        else:
            logger.info("No new users were added")
        return added

    # --- Update ---

    async def update_user_by_id(self, user_id: str, attributes: dict[str, Any]) -> User:
        """
        Merge ``attributes`` over the user's current attributes and persist them.

        Raises:
            UserNotFoundError: If the id is not cached or storage has no such record
            StoreError: If the write fails
        """
        self._check_initialization()

        existing = self._users.get(user_id)
        if existing is None:
            raise UserNotFoundError(f"User with id ({user_id}) not found")

        merged = {**existing.attributes, **attributes}
        try:
            doc = await self.store.update_item_by_id_in_collection(
                USERS, user_id, {"attributes": merged}
            )
        except Exception as e:
            handle_store_error("Failed to update user", "update_user_by_id", e)

        if doc is None:
            raise UserNotFoundError(f"Failed to update user: {user_id}")

        user = User.from_dict(doc)
        self._users[user.id] = user
        return user

    async def update_user_by_unique_identifier(
        self, unique_identifier: str, attributes: dict[str, Any]
    ) -> User:
        """
        Merge attributes into the user with this identifier.

        Raises:
            ValueError: On a blank identifier, an empty update, or an attempt
                to change ``unique_identifier`` (use modify_user_unique_identifier)
            UserNotFoundError: If no user has this identifier
        """
        if _is_blank(unique_identifier):
            raise ValueError(f"Invalid unique_identifier: {unique_identifier!r}")

        if not isinstance(attributes, Mapping) or len(attributes) == 0:
            raise ValueError(f"Invalid update data: {attributes!r}. It must be a non-empty mapping")

        if "unique_identifier" in attributes:
            raise ValueError(
                "Cannot update unique_identifier with update_user_by_unique_identifier. "
                "Use modify_user_unique_identifier instead."
            )

        user = self.get_user_by_unique_identifier(unique_identifier)
        if user is None:
            raise UserNotFoundError(f"User with unique_identifier ({unique_identifier}) not found")

        changes = {k: v for k, v in attributes.items() if k != "id"}
        return await self.update_user_by_id(user.id, changes)

    async def modify_user_unique_identifier(self, current: str, new: str) -> User:
        """
        Rename a user. Renaming to the current identifier is a no-op.

        Protected attribute documents follow the user to the new identifier.
        A failure to move them is logged; the rename itself stands.

        Raises:
            ValueError: If ``new`` is blank
            UserNotFoundError: If no user has identifier ``current``
        """
        self._check_initialization()

        if _is_blank(new):
            raise ValueError("unique_identifier must be a non-empty string")

        user = self.get_user_by_unique_identifier(current)
        if user is None:
            raise UserNotFoundError(f"User with unique_identifier ({current}) not found")

        if user.unique_identifier == new:
            return user

        try:
            doc = await self.store.update_item_by_id_in_collection(
                USERS, user.id, {"unique_identifier": new}
            )
        except Exception as e:
            handle_store_error(
                "Failed to modify user unique identifier", "modify_user_unique_identifier", e
            )

        if doc is None:
            raise UserNotFoundError(f"Failed to update unique_identifier for user: {user.id}")

        renamed = User.from_dict(doc)
        self._users[renamed.id] = renamed
        await self._rename_protected(current, new)
        return renamed

    # --- Delete ---

    async def delete_user_by_id(self, user_id: str) -> bool:
        """
        Delete a user. The cache entry is removed only if storage confirms.

        Returns:
            True if a stored user was deleted
        """
        self._check_initialization()

        if _is_blank(user_id):
            raise ValueError(f"Invalid user id: {user_id!r}")

        existing = self._users.get(user_id)
        try:
            deleted = await self.store.remove_item_from_collection(USERS, user_id)
        except Exception as e:
            handle_store_error("Failed to delete user", "delete_user_by_id", e)

        if not deleted:
            return False

        self._users.pop(user_id, None)
        if existing is not None:
            await self._cleanup_protected(existing.unique_identifier)
        return True

    async def delete_user_by_unique_identifier(self, unique_identifier: str) -> bool:
        """
        Raises:
            ValueError: If the identifier is blank
            UserNotFoundError: If no user has this identifier
        """
        if _is_blank(unique_identifier):
            raise ValueError(f"Invalid unique_identifier: {unique_identifier!r}")

        user = self.get_user_by_unique_identifier(unique_identifier)
        if user is None:
            raise UserNotFoundError(f"User with unique_identifier ({unique_identifier}) not found")

        return await self.delete_user_by_id(user.id)

    async def delete_all_users(self) -> None:
        self._check_initialization()
        try:
            await self.store.clear_collection(USERS)
        except Exception as e:
            handle_store_error("Failed to delete all users", "delete_all_users", e)
        self._users.clear()

    async def _cleanup_protected(self, unique_identifier: str) -> None:
        if self.protected is None:
            return
        try:
            await self.protected.delete_all_for_identifier(unique_identifier)
        except Exception as e:
            logger.warning(
                f"Failed to remove protected attributes for {unique_identifier}: {e}",
                extra={"unique_identifier": unique_identifier},
            )

    async def _rename_protected(self, current: str, new: str) -> None:
        if self.protected is None:
            return
        try:
            await self.protected.rename_identifier(current, new)
        except Exception as e:
            logger.warning(
                f"Failed to move protected attributes from {current} to {new}: {e}",
                extra={"unique_identifier": new},
            )

    # --- Protected attributes ---

    def _require_protected(self) -> ProtectedAttributesManager:
        if self.protected is None:
            raise RuntimeError("Protected attributes are not configured for this UserManager")
        return self.protected

    async def get_protected_attributes(
        self, unique_identifier: str, namespace: str, names: list[str]
    ) -> dict[str, Any] | None:
        return await self._require_protected().get_protected_attributes(
            unique_identifier, namespace, names
        )

    async def set_protected_attributes(
        self, unique_identifier: str, namespace: str, update: dict[str, Any]
    ) -> dict[str, Any] | None:
        return await self._require_protected().set_protected_attributes(
            unique_identifier, namespace, update
        )

    async def delete_protected_attributes(
        self, unique_identifier: str, namespace: str, names: list[str]
    ) -> bool:
        return await self._require_protected().delete_protected_attributes(
            unique_identifier, namespace, names
        )
