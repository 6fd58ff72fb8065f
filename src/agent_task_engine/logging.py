"""Structured logging configuration.

Uses standard library logging with a JSON formatter. Records emitted while an
engine step is in progress carry the task correlation fields (`task_id`,
`workid`, `planid`, `wid`) without each call site repeating them.
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

# Attributes every LogRecord has; anything else on a record came from `extra=`.
_STANDARD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "asctime",
}

_PLAIN_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_task_fields: ContextVar[dict[str, Any]] = ContextVar("agent_task_fields", default={})


@contextmanager
def task_context(**fields: Any) -> Iterator[None]:
    """Attach correlation fields to every record logged inside the block."""
    merged = {**_task_fields.get(), **{k: v for k, v in fields.items() if v is not None}}
    token = _task_fields.set(merged)
    try:
        yield
    finally:
        _task_fields.reset(token)


class TaskContextFilter(logging.Filter):
    """Copy the active task fields onto records that do not set them already."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _task_fields.get().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line; `extra=` fields go under "extra"."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003 (record)
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        extra = {
            key: value
            for key, value in vars(record).items()
            if key not in _STANDARD_ATTRS and not key.startswith("_")
        }
        if extra:
            payload["extra"] = extra
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(level: str, *, json_output: bool = True) -> None:
    """Send all logging to stderr, structured JSON by default.

    Stdout stays free for command output. Calling this again replaces the
    previous configuration.
    """

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(stream=sys.stderr)
    handler.addFilter(TaskContextFilter())
    if json_output:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(_PLAIN_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))

    root.addHandler(handler)
    root.setLevel(level.upper())
