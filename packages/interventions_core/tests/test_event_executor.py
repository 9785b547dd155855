"""
Tests for event execution across handlers and users.
"""

import logging

import pytest

from interventions_core.contracts.user import User
from interventions_core.events.executor import execute_event_for_users
from interventions_core.handlers.types import Task


def count(calls, kind, name):
    return sum(1 for call in calls if call[0] == kind and call[1] == name)


class TestExecuteEventForUsers:
    """Hook cardinality, ordering and fault isolation."""

    async def test_no_handlers_warns(self, registry, sample_event, sample_users, caplog):
        with caplog.at_level(logging.WARNING):
            await execute_event_for_users(sample_event, sample_users, registry)
        assert any("No handlers registered" in r.getMessage() for r in caplog.records)

    async def test_order_of_hooks_and_users(self, registry, make_task, make_rule, sample_event, sample_users):
        """Test before -> users in order -> after, handlers in binding order."""
        calls = []
        registry.register_task(make_task("taskA", calls))
        registry.register_decision_rule(make_rule("ruleB", calls))
        registry.register_event_handlers("ORDER_PLACED", ["taskA", "ruleB"])

        await execute_event_for_users(sample_event, sample_users, registry)

        assert calls == [
            ("before", "taskA"),
            ("should_activate", "taskA", "alice"),
            ("do_action", "taskA", "alice"),
            ("should_activate", "taskA", "bob"),
            ("do_action", "taskA", "bob"),
            ("after", "taskA"),
            ("should_activate", "ruleB", "alice"),
            ("select_action", "ruleB", "alice"),
            ("do_action", "ruleB", "alice", "nudge"),
            ("should_activate", "ruleB", "bob"),
            ("select_action", "ruleB", "bob"),
            ("do_action", "ruleB", "bob", "nudge"),
        ]

    @pytest.mark.parametrize("handler_count", [1, 3])
    @pytest.mark.parametrize("user_count", [0, 1, 4])
    async def test_cardinality(self, registry, make_task, sample_event, handler_count, user_count):
        """Test hooks fire once per handler and execution once per user."""
        calls = []
        names = [f"task{i}" for i in range(handler_count)]
        users = [User(id=f"u{i}", unique_identifier=f"user{i}") for i in range(user_count)]
        # every other user fails in do_action
        failing = tuple(user.unique_identifier for user in users[::2])
        for name in names:
            registry.register_task(make_task(name, calls, fail_for=failing))
        registry.register_event_handlers("ORDER_PLACED", names)

        await execute_event_for_users(sample_event, users, registry)

        for name in names:
            assert count(calls, "before", name) == 1
            assert count(calls, "after", name) == 1
            assert count(calls, "should_activate", name) == user_count
            assert count(calls, "do_action", name) == user_count

    async def test_duplicate_binding_runs_hooks_once(self, registry, make_task, sample_event, sample_users):
        """Test that a name bound twice keeps one before and one after call."""
        calls = []
        registry.register_task(make_task("taskA", calls))
        registry.register_event_handlers("ORDER_PLACED", ["taskA", "taskA"])

        await execute_event_for_users(sample_event, sample_users, registry)

        assert count(calls, "before", "taskA") == 1
        assert count(calls, "after", "taskA") == 1
        assert calls[0] == ("before", "taskA")
        assert count(calls, "do_action", "taskA") == 2 * len(sample_users)

    async def test_failing_user_is_isolated(self, registry, make_task, sample_event, sample_users, caplog):
        """Test that a failure for one user does not stop the next user or hook."""
        calls = []
        registry.register_task(make_task("taskA", calls, fail_for=("alice",)))
        registry.register_event_handlers("ORDER_PLACED", ["taskA"])

        with caplog.at_level(logging.ERROR):
            await execute_event_for_users(sample_event, sample_users, registry)

        assert ("do_action", "taskA", "bob") in calls
        assert count(calls, "after", "taskA") == 1
        errors = [r for r in caplog.records if r.levelno == logging.ERROR]
        assert errors[0].user == "alice"
        assert errors[0].handler == "taskA"

    async def test_failing_hooks_are_isolated(self, registry, sample_event, sample_users):
        """Test that before/after errors do not cancel the run."""
        executed = []

        def broken_hook(event):
            raise RuntimeError("hook failed")

        registry.register_task(
            Task(
                name="taskA",
                should_activate=lambda e, u: True,
                do_action=lambda e, u: executed.append(u.unique_identifier),
                before_execution=broken_hook,
                after_execution=broken_hook,
            )
        )
        registry.register_event_handlers("ORDER_PLACED", ["taskA"])

        await execute_event_for_users(sample_event, sample_users, registry)
        assert executed == ["alice", "bob"]

    async def test_unknown_handler_skipped_per_user(self, registry, make_task, sample_event, sample_users, caplog):
        calls = []
        registry.register_task(make_task("known", calls))
        registry.register_event_handlers("ORDER_PLACED", ["missing", "known"])

        with caplog.at_level(logging.WARNING):
            await execute_event_for_users(sample_event, sample_users, registry)

        not_found = [r for r in caplog.records if "not found" in r.getMessage()]
        assert len(not_found) == len(sample_users)
        assert count(calls, "do_action", "known") == 2

    async def test_results_go_to_recorder(self, registry, recorder, store, make_task, sample_event, sample_users):
        from interventions_core.contracts.types import TASK_RESULTS

        registry.register_task(make_task("taskA"))
        registry.register_event_handlers("ORDER_PLACED", ["taskA"])

        await execute_event_for_users(sample_event, sample_users, registry, recorder)

        results = await store.get_all_in_collection(TASK_RESULTS)
        assert [doc["user"]["unique_identifier"] for doc in results] == ["alice", "bob"]
