"""
Storage error helpers.
"""

import logging
from typing import NoReturn

from interventions_core.storage.base import StoreError

logger = logging.getLogger(__name__)


def handle_store_error(message: str, func_name: str, error: BaseException) -> NoReturn:
    """
    Log a storage failure and re-raise it.

    StoreError instances are re-raised unchanged so callers can still tell a
    DuplicateKeyError apart; anything else is wrapped in a StoreError that
    chains the original.

    Args:
        message: What was being attempted
        func_name: Name of the calling function
        error: The caught exception

    Raises:
        StoreError: Always
    """
    logger.error(
        message,
        extra={"function": func_name, "error": str(error)},
        exc_info=error,
    )
    if isinstance(error, StoreError):
        raise error
    raise StoreError(f"{message}: {error}") from error
