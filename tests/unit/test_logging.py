"""Unit tests for structured logging and error payloads."""

from __future__ import annotations

import json
import logging
import sys

from agent_task_engine.errors import (
    InvalidState,
    IrreversibleEntry,
    NotFound,
    TerminalStateViolation,
)
from agent_task_engine.logging import (
    JsonFormatter,
    TaskContextFilter,
    configure_logging,
    task_context,
)


def _record(**extra: object) -> logging.LogRecord:
    record = logging.LogRecord(
        name="agent_task_engine.engine.executor",
        level=logging.WARNING,
        pathname=__file__,
        lineno=1,
        msg="Task %s stopped",
        args=(7,),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_includes_extra_fields() -> None:
    line = JsonFormatter().format(_record(task_id=7, error={"type": "CheckFailed"}))
    payload = json.loads(line)

    assert payload["level"] == "WARNING"
    assert payload["logger"] == "agent_task_engine.engine.executor"
    assert payload["message"] == "Task 7 stopped"
    assert payload["extra"] == {"task_id": 7, "error": {"type": "CheckFailed"}}
    assert "exception" not in payload


def test_json_formatter_renders_exceptions() -> None:
    try:
        raise RuntimeError("boom")
    except RuntimeError:
        record = _record()
        record.exc_info = sys.exc_info()

    payload = json.loads(JsonFormatter().format(record))

    assert "RuntimeError: boom" in payload["exception"]
    assert "extra" not in payload


def test_configure_logging_replaces_root_handlers() -> None:
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    try:
        configure_logging("debug")
        configure_logging("info", json_output=False)

        assert len(root.handlers) == 1
        assert root.level == logging.INFO
        assert not isinstance(root.handlers[0].formatter, JsonFormatter)
    finally:
        for handler in list(root.handlers):
            root.removeHandler(handler)
        for handler in saved_handlers:
            root.addHandler(handler)
        root.setLevel(saved_level)


def test_error_payloads_drop_empty_details() -> None:
    payload = NotFound("Task not found: 3", task_id=3, planid=None).to_payload()
    assert payload == {"type": "NotFound", "message": "Task not found: 3", "task_id": 3}

    irreversible = IrreversibleEntry("no undo", workid="w", ordinal=2, tool="email")
    assert irreversible.to_payload()["ordinal"] == 2
    assert (irreversible.workid, irreversible.ordinal) == ("w", 2)

    assert issubclass(TerminalStateViolation, InvalidState)


def test_task_context_fields_reach_records() -> None:
    context_filter = TaskContextFilter()

    with task_context(task_id=4, workid="w-4", planid=None):
        with task_context(wid="review"):
            inner = _record()
            context_filter.filter(inner)
        outer = _record(task_id=99)
        context_filter.filter(outer)
    after = _record()
    context_filter.filter(after)

    assert (inner.task_id, inner.workid, inner.wid) == (4, "w-4", "review")
    assert not hasattr(inner, "planid")
    assert outer.task_id == 99
    assert not hasattr(outer, "wid")
    assert not hasattr(after, "task_id")
    assert json.loads(JsonFormatter().format(inner))["extra"]["workid"] == "w-4"
