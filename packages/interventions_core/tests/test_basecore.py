"""
Tests for basecore settings and logging formatters.
"""

import json
import logging

import pytest
from pydantic import ValidationError

from basecore.logging import ContextFormatter, JsonFormatter, extract_extra
from basecore.settings import Settings


def make_record(**extra):
    record = logging.LogRecord("interventions_core.test", logging.INFO, __file__, 1, "hello %s", ("world",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestSettings:

    def test_defaults(self):
        settings = Settings(_env_file=None)
        assert settings.STORE_BACKEND == "memory"
        assert settings.RESULT_PERSISTENCE_ENABLED is True
        assert settings.handler_modules == []

    def test_values_are_normalized(self):
        settings = Settings(_env_file=None, STORE_BACKEND=" Redis ", LOG_LEVEL="debug")
        assert settings.STORE_BACKEND == "redis"
        assert settings.LOG_LEVEL == "DEBUG"

    @pytest.mark.parametrize(
        "overrides",
        [
            {"STORE_BACKEND": "mongo"},
            {"LOG_LEVEL": "chatty"},
            {"CHANGE_FEED_BLOCK_MS": 0},
        ],
    )
    def test_invalid_values_rejected(self, overrides):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, **overrides)

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("HANDLER_MODULES", "app.handlers, app.rules ,")
        monkeypatch.setenv("RESULT_PERSISTENCE_ENABLED", "false")
        settings = Settings(_env_file=None)
        assert settings.handler_modules == ["app.handlers", "app.rules"]
        assert settings.RESULT_PERSISTENCE_ENABLED is False


class TestFormatters:

    def test_extract_extra_only_returns_custom_fields(self):
        record = make_record(event_id="e1", user="alice")
        assert extract_extra(record) == {"event_id": "e1", "user": "alice"}

    def test_json_formatter(self):
        line = JsonFormatter().format(make_record(kind="task", record={"name": "taskA"}))
        payload = json.loads(line)
        assert payload["message"] == "hello world"
        assert payload["level"] == "INFO"
        assert payload["kind"] == "task"
        assert payload["record"] == {"name": "taskA"}

    def test_context_formatter(self):
        line = ContextFormatter("%(levelname)s %(message)s").format(make_record(event_id="e1"))
        assert line == "INFO hello world | event_id=e1"
