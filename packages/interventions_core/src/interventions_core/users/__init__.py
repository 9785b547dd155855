"""Users - cached user records and protected attributes."""

from interventions_core.users.manager import UserManager, UserNotFoundError
from interventions_core.users.protected import ProtectedAttributesManager

__all__ = ["ProtectedAttributesManager", "UserManager", "UserNotFoundError"]
