"""
Pytest fixtures for interventions_core tests.

Every fixture uses the in-memory data store; change notifications are
delivered by asyncio tasks, so tests await ``settle()`` before asserting on
listener side effects.
"""

import asyncio
from datetime import datetime, timezone

import pytest

from interventions_core.changes.listener import ChangeListenerManager
from interventions_core.contracts.event import Event
from interventions_core.contracts.user import User
from interventions_core.handlers.recorder import ResultRecorder
from interventions_core.handlers.registry import HandlerRegistry
from interventions_core.handlers.types import DecisionRule, Task
from interventions_core.storage.memory import MemoryDataStore
from interventions_core.users.manager import UserManager
from interventions_core.users.protected import ProtectedAttributesManager


@pytest.fixture
def settle():
    """Let pending change listener tasks run."""

    async def _settle(rounds: int = 10):
        for _ in range(rounds):
            await asyncio.sleep(0)

    return _settle


@pytest.fixture
async def store():
    """Initialized in-memory data store."""
    data_store = MemoryDataStore()
    await data_store.init()
    yield data_store
    await data_store.close()


@pytest.fixture
async def listeners(store):
    manager = ChangeListenerManager(store)
    yield manager
    await manager.unsubscribe_all()


@pytest.fixture
def registry():
    return HandlerRegistry()


@pytest.fixture
def recorder(store):
    return ResultRecorder(store_provider=lambda: store)


@pytest.fixture
def protected(store):
    return ProtectedAttributesManager(store)


@pytest.fixture
async def user_manager(store, listeners, protected):
    """Initialized UserManager."""
    manager = UserManager(store, listeners, protected)
    await manager.init()
    yield manager
    await manager.shutdown()


@pytest.fixture
def sample_event():
    return Event(
        event_type="ORDER_PLACED",
        generated_timestamp=datetime(2024, 1, 15, 9, 30, tzinfo=timezone.utc),
        event_details={"order_id": "o1"},
        id="evt-1",
    )


@pytest.fixture
def sample_users():
    return [
        User(id="u1", unique_identifier="alice", attributes={"tz": "UTC"}),
        User(id="u2", unique_identifier="bob", attributes={"tz": "CET"}),
    ]


@pytest.fixture
def make_task():
    """Factory for tasks that record every call into ``calls``."""

    def _make(name="taskA", calls=None, fail_for=(), activate=True):
        calls = calls if calls is not None else []

        def should_activate(event, user):
            calls.append(("should_activate", name, user.unique_identifier))
            return {"status": "success", "result": activate}

        def do_action(event, user):
            calls.append(("do_action", name, user.unique_identifier))
            if user.unique_identifier in fail_for:
                raise RuntimeError(f"{name} failed for {user.unique_identifier}")
            return {"status": "success", "result": "sent"}

        def before_execution(event):
            calls.append(("before", name))

        def after_execution(event):
            calls.append(("after", name))

        return Task(
            name=name,
            should_activate=should_activate,
            do_action=do_action,
            before_execution=before_execution,
            after_execution=after_execution,
        )

    return _make


@pytest.fixture
def make_rule():
    """Factory for async decision rules that record every call into ``calls``."""

    def _make(name="ruleA", calls=None, action="nudge"):
        calls = calls if calls is not None else []

        async def should_activate(event, user):
            calls.append(("should_activate", name, user.unique_identifier))
            return {"status": "success", "result": True}

        async def select_action(event, user):
            calls.append(("select_action", name, user.unique_identifier))
            return {"status": "success", "result": action}

        async def do_action(event, user, selected):
            calls.append(("do_action", name, user.unique_identifier, selected))
            return {"status": "success", "result": selected}

        return DecisionRule(
            name=name,
            should_activate=should_activate,
            select_action=select_action,
            do_action=do_action,
        )

    return _make
