"""
Tests for the change listener manager.
"""

import asyncio
import logging

import pytest

from interventions_core.changes.listener import ChangeEventBus, ChangeListenerManager
from interventions_core.contracts.types import ChangeType


class TestSubscribe:
    """Subscription lifecycle."""

    async def test_subscribe_twice_opens_one_feed(self, store, listeners, caplog):
        """Test that a second subscribe for the same key only warns."""
        received = []

        await listeners.subscribe("users", ChangeType.INSERT, received.append)
        with caplog.at_level(logging.WARNING):
            await listeners.subscribe("users", ChangeType.INSERT, received.append)

        assert len(store.open_feeds) == 1
        assert listeners.has("users", ChangeType.INSERT)
        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert len(warnings) == 1
        assert "already exists" in warnings[0].getMessage()

    async def test_callback_receives_payload(self, store, listeners, settle):
        """Test that inserts are dispatched to the callback."""
        received = []
        await listeners.subscribe("users", ChangeType.INSERT, received.append)

        record = await store.add_item_to_collection("users", {"unique_identifier": "a"})
        await settle()

        assert received == [record]

    async def test_async_callback(self, store, listeners, settle):
        """Test that coroutine callbacks are awaited."""
        received = []

        async def on_delete(payload):
            received.append(payload)

        await listeners.subscribe("users", ChangeType.DELETE, on_delete)
        record = await store.add_item_to_collection("users", {"unique_identifier": "a"})
        await store.remove_item_from_collection("users", record["id"])
        await settle()

        assert received == [{"id": record["id"]}]

    async def test_payload_republished_on_bus(self, store, listeners, settle):
        """Test that the bus gets every payload under collection:change_type."""
        bus_received = []
        listeners.bus.on("users:insert", bus_received.append)
        await listeners.subscribe("users", ChangeType.INSERT, lambda payload: None)

        record = await store.add_item_to_collection("users", {"unique_identifier": "a"})
        await settle()

        assert bus_received == [record]

    async def test_callback_error_is_logged(self, store, listeners, settle, caplog):
        """Test that a failing callback does not stop later notifications."""
        received = []

        def flaky(payload):
            received.append(payload)
            if len(received) == 1:
                raise ValueError("boom")

        await listeners.subscribe("users", ChangeType.INSERT, flaky)
        with caplog.at_level(logging.ERROR):
            await store.add_item_to_collection("users", {"n": 1})
            await store.add_item_to_collection("users", {"n": 2})
            await settle()

        assert len(received) == 2
        assert any("callback failed" in r.getMessage() for r in caplog.records)

    async def test_feed_error_is_logged_not_raised(self, store, listeners, settle, caplog):
        """Test that feed transport errors are only logged."""
        await listeners.subscribe("users", ChangeType.INSERT, lambda payload: None)
        feed = store.open_feeds[0]

        with caplog.at_level(logging.ERROR):
            feed.fail(ConnectionError("stream lost"))
            await settle()

        assert any("Change feed error" in r.getMessage() for r in caplog.records)
        assert listeners.has("users", ChangeType.INSERT)


class TestUnsubscribe:
    """Teardown behaviour."""

    async def test_unsubscribe_closes_feed(self, store, listeners):
        """Test that unsubscribe releases the feed and the entry."""
        await listeners.subscribe("users", ChangeType.INSERT, lambda payload: None)
        feed = store.open_feeds[0]

        await listeners.unsubscribe("users", ChangeType.INSERT)

        assert feed.closed
        assert store.open_feeds == []
        assert not listeners.has("users", ChangeType.INSERT)

    async def test_unsubscribe_unknown_warns(self, listeners, caplog):
        """Test that removing a missing listener only warns."""
        with caplog.at_level(logging.WARNING):
            await listeners.unsubscribe("users", ChangeType.UPDATE)
        assert any("No change listener" in r.getMessage() for r in caplog.records)

    async def test_failing_cleanup_still_closes_feed(self, store, listeners):
        """Test that a cleanup failure never prevents closing the feed."""
        await listeners.subscribe("users", ChangeType.INSERT, lambda payload: None)
        feed = store.open_feeds[0]

        async def broken_cleanup():
            raise RuntimeError("cleanup failed")

        feed.cleanup = broken_cleanup
        await listeners.unsubscribe("users", ChangeType.INSERT)

        assert feed.closed
        assert not listeners.has("users", ChangeType.INSERT)

    async def test_cleanup_is_called(self, store, listeners):
        """Test that a sync cleanup capability is invoked."""
        await listeners.subscribe("users", ChangeType.INSERT, lambda payload: None)
        feed = store.open_feeds[0]
        calls = []
        feed.cleanup = lambda: calls.append("cleanup")

        await listeners.unsubscribe("users", ChangeType.INSERT)
        assert calls == ["cleanup"]

    async def test_unsubscribe_all(self, store, listeners):
        """Test that every listener is torn down."""
        for change_type in ChangeType:
            await listeners.subscribe("users", change_type, lambda payload: None)
        assert len(store.open_feeds) == 3

        await listeners.unsubscribe_all()

        assert store.open_feeds == []
        assert listeners.keys == []

    async def test_unsubscribe_waits_for_running_callback(self, store, listeners, settle):
        """Test that a callback in progress is finished, not cancelled."""
        gate = asyncio.Event()
        finished = []

        async def slow(payload):
            await gate.wait()
            finished.append(payload["id"])

        await listeners.subscribe("users", ChangeType.INSERT, slow)
        first = await store.add_item_to_collection("users", {"n": 1})
        await settle()
        # Queued behind the running callback; dropped once the feed is closed
        await store.add_item_to_collection("users", {"n": 2})

        teardown = asyncio.create_task(listeners.unsubscribe("users", ChangeType.INSERT))
        await settle()
        assert not teardown.done()

        gate.set()
        await teardown

        assert finished == [first["id"]]
        assert store.open_feeds == []
        assert not listeners.has("users", ChangeType.INSERT)

    async def test_no_dispatch_after_unsubscribe(self, store, listeners, settle):
        """Test that changes after unsubscribe are not delivered."""
        received = []
        await listeners.subscribe("users", ChangeType.INSERT, received.append)
        await listeners.unsubscribe("users", ChangeType.INSERT)

        await store.add_item_to_collection("users", {"n": 1})
        await settle()
        assert received == []

    async def test_callback_can_unsubscribe_itself(self, store, settle):
        """Test that a callback may tear down its own listener."""
        manager = ChangeListenerManager(store)
        received = []

        async def once(payload):
            received.append(payload)
            await manager.unsubscribe("users", ChangeType.INSERT)

        await manager.subscribe("users", ChangeType.INSERT, once)
        await store.add_item_to_collection("users", {"n": 1})
        await settle()
        await store.add_item_to_collection("users", {"n": 2})
        await settle()

        assert len(received) == 1
        assert not manager.has("users", ChangeType.INSERT)


class TestChangeEventBus:
    """In-process bus."""

    async def test_on_off(self):
        bus = ChangeEventBus()
        received = []
        bus.on("users:insert", received.append)
        await bus.emit("users:insert", {"id": "1"})
        bus.off("users:insert", received.append)
        await bus.emit("users:insert", {"id": "2"})

        assert received == [{"id": "1"}]
        assert bus.listener_count("users:insert") == 0

    async def test_listener_error_isolated(self):
        bus = ChangeEventBus()
        received = []

        def broken(payload):
            raise RuntimeError("boom")

        bus.on("k", broken)
        bus.on("k", received.append)
        await bus.emit("k", {"id": "1"})
        assert received == [{"id": "1"}]

    @pytest.mark.parametrize("change_type", list(ChangeType))
    async def test_keys_use_change_type_value(self, store, change_type):
        manager = ChangeListenerManager(store)
        await manager.subscribe("events", change_type, lambda payload: None)
        assert manager.keys == [f"events:{change_type.value}"]
        await manager.unsubscribe_all()
