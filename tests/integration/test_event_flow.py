"""
Integration Test: Event Flow (publish -> Redis change stream -> drain -> archive)

This test verifies the complete event flow on the Redis backend:
1. Users added through the engine reach the user cache via the change stream
2. A published event lands in the event_queue hash
3. The insert notification wakes the queue drain
4. Handlers run for every cached user and results are written
5. The event moves to archived_events

Requirements:
- Redis running (docker compose up -d redis)

Run with:
    pytest tests/integration/test_event_flow.py -v
"""

import pytest

from basecore.settings import Settings
from interventions_core.contracts.event import utcnow
from interventions_core.contracts.types import (
    ARCHIVED_EVENTS,
    EVENT_QUEUE,
    TASK_RESULTS,
    USERS,
    ChangeType,
)
from interventions_core.contracts.user import NewUserRecord
from interventions_core.engine import InterventionEngine
from interventions_core.handlers.types import Task
from interventions_core.storage.base import DuplicateKeyError
from interventions_core.users.manager import UNIQUE_IDENTIFIER_INDEX


@pytest.fixture
async def engine(redis_store):
    intervention_engine = InterventionEngine(
        store=redis_store, settings=Settings(_env_file=None, STORE_BACKEND="redis")
    )
    await intervention_engine.init()
    yield intervention_engine
    await intervention_engine.shutdown()


class TestRedisStore:

    async def test_insertion_order_and_unique_index(self, redis_store):
        await redis_store.ensure_indexes(USERS, [UNIQUE_IDENTIFIER_INDEX])
        first = await redis_store.add_item_to_collection(USERS, {"unique_identifier": "alice"})
        second = await redis_store.add_item_to_collection(USERS, {"unique_identifier": "bob"})

        with pytest.raises(DuplicateKeyError):
            await redis_store.add_item_to_collection(USERS, {"unique_identifier": "alice"})

        docs = await redis_store.get_all_in_collection(USERS)
        assert [doc["id"] for doc in docs] == [first["id"], second["id"]]

    async def test_change_feed_only_sees_later_changes(self, redis_store):
        await redis_store.add_item_to_collection(EVENT_QUEUE, {"event_type": "BEFORE"})
        feed = redis_store.get_change_feed(EVENT_QUEUE, ChangeType.INSERT)
        await feed.open()
        try:
            doc = await redis_store.add_item_to_collection(EVENT_QUEUE, {"event_type": "AFTER"})
            notification = await feed.__anext__()
        finally:
            await feed.close()

        assert notification.record_id == doc["id"]
        assert notification.document["event_type"] == "AFTER"


class TestEventFlow:

    async def test_publish_to_archive(self, engine, redis_store, wait_for):
        executed = []

        def do_action(event, user):
            executed.append((event.event_details["order_id"], user.unique_identifier))
            return {"status": "success", "result": "sent"}

        engine.register_task(Task(name="thank_you", should_activate=lambda e, u: True, do_action=do_action))
        engine.register_event_handlers("ORDER_PLACED", ["thank_you"])

        await engine.add_users([NewUserRecord("alice"), NewUserRecord("bob")])
        assert await wait_for(_async(lambda: len(engine.get_all_users()) == 2))

        await engine.start_engine()
        event = await engine.publish_event("ORDER_PLACED", utcnow(), {"order_id": "o-42"})

        assert await wait_for(lambda: redis_store.is_collection_empty(EVENT_QUEUE))
        assert sorted(executed) == [("o-42", "alice"), ("o-42", "bob")]

        archived = await redis_store.get_all_in_collection(ARCHIVED_EVENTS)
        assert [doc["queued_id"] for doc in archived] == [event.id]
        assert len(await redis_store.get_all_in_collection(TASK_RESULTS)) == 2

    async def test_user_cache_follows_external_writes(self, engine, redis_store, wait_for):
        """Test that writes made directly to the store reach the cache."""
        doc = await redis_store.add_item_to_collection(
            USERS, {"unique_identifier": "carol", "attributes": {"tz": "UTC"}}
        )
        assert await wait_for(_async(lambda: engine.get_user("carol") is not None))

        await redis_store.update_item_by_id_in_collection(USERS, doc["id"], {"attributes": {"tz": "CET"}})
        assert await wait_for(_async(lambda: engine.get_user("carol").attributes == {"tz": "CET"}))

        await redis_store.remove_item_from_collection(USERS, doc["id"])
        assert await wait_for(_async(lambda: engine.get_user("carol") is None))


def _async(predicate):
    async def _check():
        return predicate()

    return _check
