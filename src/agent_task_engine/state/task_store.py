"""Durable task records.

`transition` is the only mutator of a record's lifecycle. It validates the edge
against the task state machine and persists before returning, so callers can
act on the consequence knowing the intent is already durable.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

from agent_task_engine.errors import InvalidState, NotFound, TerminalStateViolation
from agent_task_engine.state.manager import StateManager
from agent_task_engine.state.models import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATES,
    TaskEvent,
    TaskRecord,
    TaskState,
    utc_now_iso,
)
from agent_task_engine.workflow.graph import WorkflowGraph

logger = logging.getLogger(__name__)

_UNSET: Any = object()


class TaskStore:
    """Task records keyed by their monotonically assigned id."""

    def __init__(self, manager: StateManager, graph: WorkflowGraph) -> None:
        self._manager = manager
        self._graph = graph

    def create(
        self,
        input: Any,
        *,
        wid: str | None = None,
        planid: str | None = None,
        workid: str | None = None,
    ) -> TaskRecord:
        start = wid or self._graph.entry
        self._graph.resolve(start)
        if not self._graph.is_reachable(start):
            raise InvalidState(
                f"Node {start!r} is not reachable from entry {self._graph.entry!r}", node_id=start
            )

        with self._manager.transaction() as state:
            record = TaskRecord(
                id=state.next_task_id,
                workid=workid or uuid.uuid4().hex,
                input=input,
                wid=start,
                planid=planid,
            )
            state.next_task_id += 1
            state.tasks[record.id] = record
            self._event(record, "created")

        logger.info(
            "Task created",
            extra={"task_id": record.id, "workid": record.workid, "planid": planid, "wid": start},
        )
        return record.model_copy(deep=True)

    def get(self, task_id: int) -> TaskRecord:
        with self._manager.reading() as state:
            return self._get_unlocked(state.tasks, task_id).model_copy(deep=True)

    def list(
        self, *, planid: str | None = None, state: TaskState | None = None
    ) -> list[TaskRecord]:
        with self._manager.reading() as current:
            records = [
                r.model_copy(deep=True)
                for r in current.tasks.values()
                if (planid is None or r.planid == planid) and (state is None or r.state == state)
            ]
        return sorted(records, key=lambda r: r.id)

    def list_pending(self, planid: str | None = None) -> list[TaskRecord]:
        return self.list(planid=planid, state=TaskState.PENDING)

    def transition(
        self,
        task_id: int,
        new_state: TaskState,
        *,
        wid: str | None = None,
        output: Any = _UNSET,
        error: dict[str, Any] | None = None,
        suspend_reason: str | None = None,
        visits: dict[str, int] | None = None,
        event: str | None = None,
        details: dict[str, Any] | None = None,
        expected: TaskState | None = None,
    ) -> TaskRecord:
        """Move a record along one edge of the task state machine.

        `output` is left untouched unless passed; pass None to discard it.
        `expected` rejects the write when the record is no longer in the state
        the caller read it in.
        """

        if wid is not None:
            self._graph.resolve(wid)

        with self._manager.transaction() as state:
            record = self._get_unlocked(state.tasks, task_id)
            current = record.state
            if expected is not None and current is not expected:
                raise InvalidState(
                    f"Task {task_id} is {current.value}, expected {expected.value}",
                    task_id=task_id,
                    state=current.value,
                    expected=expected.value,
                    requested=new_state.value,
                )
            if current in TERMINAL_STATES:
                raise TerminalStateViolation(
                    f"Task {task_id} is {current.value}; no further transitions accepted",
                    task_id=task_id,
                    state=current.value,
                    requested=new_state.value,
                )
            if new_state not in ALLOWED_TRANSITIONS[current]:
                raise InvalidState(
                    f"Illegal transition: {current.value} -> {new_state.value}",
                    task_id=task_id,
                    state=current.value,
                    requested=new_state.value,
                )

            updates: dict[str, Any] = {"state": new_state, "updated_at": utc_now_iso()}
            if wid is not None:
                updates["wid"] = wid
            if output is not _UNSET:
                updates["output"] = output
            if error is not None:
                updates["error"] = error
            if visits is not None:
                updates["visits"] = dict(visits)
            updates["suspend_reason"] = (
                suspend_reason if new_state is TaskState.PENDING else None
            )

            updated = record.model_copy(update=updates)
            state.tasks[task_id] = updated
            self._event(updated, event or new_state.value, details)

        if current is not new_state:
            logger.info(
                "Task transitioned",
                extra={
                    "task_id": task_id,
                    "from_state": current.value,
                    "to_state": new_state.value,
                    "wid": updated.wid,
                },
            )
        return updated.model_copy(deep=True)

    def reassign(self, task_id: int, planid: str) -> TaskRecord:
        """Move ownership of a record to another plan entry."""
        with self._manager.transaction() as state:
            record = self._get_unlocked(state.tasks, task_id)
            updated = record.model_copy(update={"planid": planid, "updated_at": utc_now_iso()})
            state.tasks[task_id] = updated
            self._event(updated, "reassigned", {"from": record.planid, "to": planid})
        return updated.model_copy(deep=True)

    def record_event(
        self, task_id: int, kind: str, details: dict[str, Any] | None = None
    ) -> None:
        with self._manager.transaction() as state:
            self._event(self._get_unlocked(state.tasks, task_id), kind, details)

    def history(self, task_id: int) -> list[TaskEvent]:
        with self._manager.reading() as state:
            self._get_unlocked(state.tasks, task_id)
            return [e.model_copy(deep=True) for e in state.events if e.task_id == task_id]

    def remove(self, task_id: int) -> None:
        """Delete a finished record and its history."""
        with self._manager.transaction() as state:
            record = self._get_unlocked(state.tasks, task_id)
            if not record.is_terminal:
                raise InvalidState(
                    f"Task {task_id} is {record.state.value}; only terminal tasks can be removed",
                    task_id=task_id,
                    state=record.state.value,
                )
            del state.tasks[task_id]
            state.events = [e for e in state.events if e.task_id != task_id]
        logger.info("Task removed", extra={"task_id": task_id})

    def _event(
        self, record: TaskRecord, kind: str, details: dict[str, Any] | None = None
    ) -> None:
        self._manager.state.events.append(
            TaskEvent(task_id=record.id, kind=kind, wid=record.wid, details=details or {})
        )

    @staticmethod
    def _get_unlocked(tasks: dict[int, TaskRecord], task_id: int) -> TaskRecord:
        try:
            return tasks[task_id]
        except KeyError:
            raise NotFound(f"Task not found: {task_id}", task_id=task_id) from None
