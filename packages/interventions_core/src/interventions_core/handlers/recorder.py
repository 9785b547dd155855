"""
Result Recorder

Stores the ResultRecord produced by each handler execution.

Resolution order:
- task results: task override, then decision rule override, then default
- decision rule results: decision rule override, then default

The default tier writes to the kind's results collection when persistence is
enabled, and otherwise (or when the write fails) logs the record at debug
level. With persistence disabled the store provider is never called.

Nothing here raises to the caller.
"""

import logging
from typing import Any, Awaitable, Callable

from interventions_core.contracts.results import ResultRecord
from interventions_core.contracts.types import (
    DECISION_RULE_RESULTS,
    TASK_RESULTS,
    HandlerKind,
)
from interventions_core.storage.base import DataStore
from interventions_core.utils import maybe_await

logger = logging.getLogger(__name__)

RecordResultFunction = Callable[[ResultRecord], Awaitable[Any] | Any]
StoreProvider = Callable[[], DataStore | Awaitable[DataStore]]


class ResultRecorder:
    """Layered result writer with a persistence kill switch."""

    def __init__(
        self,
        store_provider: StoreProvider | None = None,
        persistence_enabled: bool = True,
    ):
        self._store_provider = store_provider
        self._persistence_enabled = persistence_enabled
        self._store: DataStore | None = None
        self._task_recorder: RecordResultFunction | None = None
        self._decision_rule_recorder: RecordResultFunction | None = None

    @property
    def persistence_enabled(self) -> bool:
        return self._persistence_enabled

    def set_task_result_recorder(self, fn: RecordResultFunction | None) -> None:
        self._task_recorder = fn

    def set_decision_rule_result_recorder(self, fn: RecordResultFunction | None) -> None:
        self._decision_rule_recorder = fn

    def set_persistence_enabled(self, enabled: bool) -> None:
        """Toggle the storage tier; the cached store handle is always dropped."""
        self._persistence_enabled = enabled
        self._store = None

    def reset(self) -> None:
        self._task_recorder = None
        self._decision_rule_recorder = None
        self._persistence_enabled = True
        self._store = None

    @staticmethod
    def has_result_record(record: ResultRecord) -> bool:
        return record.has_steps()

    async def handle_task_result(self, record: ResultRecord) -> None:
        if not self.has_result_record(record):
            return

        if self._task_recorder is not None:
            if await self._try_override(self._task_recorder, record, "Task result recorder"):
                return
        elif self._decision_rule_recorder is not None:
            if await self._try_override(
                self._decision_rule_recorder, record, "Delegated decision rule recorder"
            ):
                return

        await self._persist_or_log(TASK_RESULTS, record, HandlerKind.TASK)

    async def handle_decision_rule_result(self, record: ResultRecord) -> None:
        if not self.has_result_record(record):
            return

        if self._decision_rule_recorder is not None:
            if await self._try_override(
                self._decision_rule_recorder, record, "Decision rule result recorder"
            ):
                return

        await self._persist_or_log(DECISION_RULE_RESULTS, record, HandlerKind.DECISION_RULE)

    async def handle_result(self, kind: HandlerKind, record: ResultRecord) -> None:
        if kind == HandlerKind.TASK:
            await self.handle_task_result(record)
        else:
            await self.handle_decision_rule_result(record)

    async def _try_override(
        self, fn: RecordResultFunction, record: ResultRecord, label: str
    ) -> bool:
        try:
            await maybe_await(fn(record))
            return True
        except Exception as e:
            logger.warning(
                f"{label} failed; falling back to default: {e}",
                extra={"handler": record.name},
            )
            return False

    async def _get_store(self) -> DataStore | None:
        if not self._persistence_enabled or self._store_provider is None:
            return None
        if self._store is None:
            self._store = await maybe_await(self._store_provider())
        return self._store

    async def _persist_or_log(
        self, collection: str, record: ResultRecord, kind: HandlerKind
    ) -> None:
        if self._persistence_enabled:
            try:
                store = await self._get_store()
                if store is not None:
                    await store.add_item_to_collection(collection, record.to_dict())
                    return
            except Exception as e:
                self._store = None
                logger.warning(
                    f"Result recorder storage path failed; falling back to log: {e}",
                    extra={"kind": kind.value, "collection": collection},
                )

        logger.debug(
            f"[ResultRecorder:{kind.value}] {record.name}",
            extra={"kind": kind.value, "record": record.to_dict()},
        )
