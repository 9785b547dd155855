"""
Logging setup shared by every service entry point.

Modules log through ``logging.getLogger(__name__)`` and attach structured
context with ``extra={...}``. setup_logging() wires the root logger once,
either with a readable line format or with one JSON object per record.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from basecore.settings import get_settings

# Attributes every LogRecord carries; anything else came in through `extra`.
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "asctime", "taskName"}

_configured = False


def extract_extra(record: logging.LogRecord) -> dict[str, Any]:
    """Return the structured fields passed via ``extra=`` on a log call."""
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RESERVED_ATTRS and not key.startswith("_")
    }


class JsonFormatter(logging.Formatter):
    """Render each record as a single JSON line including extra fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(extract_extra(record))
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class ContextFormatter(logging.Formatter):
    """Plain text formatter that appends extra fields as key=value pairs."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extra = extract_extra(record)
        if extra:
            context = " ".join(f"{key}={value}" for key, value in extra.items())
            line = f"{line} | {context}"
        return line


def setup_logging(level: str | None = None, json_output: bool | None = None) -> None:
    """
    Configure the root logger.

    Safe to call multiple times; only the first call installs a handler.

    Args:
        level: Log level name (defaults to settings.LOG_LEVEL)
        json_output: Emit JSON lines (defaults to settings.LOG_JSON)
    """
    global _configured

    settings = get_settings()
    level = (level or settings.LOG_LEVEL).upper()
    json_output = settings.LOG_JSON if json_output is None else json_output

    root = logging.getLogger()
    root.setLevel(level)

    if _configured:
        return

    handler = logging.StreamHandler(sys.stdout)
    if json_output:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            ContextFormatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")
        )
    root.addHandler(handler)
    _configured = True
