"""Exit the execution canvas and come back later.

This is the only path by which a task leaves active execution and re-enters it.
Nothing here runs on a timer: a pending task stays pending until someone calls
:meth:`SuspendResumeController.resume`.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from agent_task_engine.engine.executor import ExecutionEngine, require_state
from agent_task_engine.state.models import ResumeDecision, TaskRecord, TaskState

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SuspendAck:
    task_id: int
    wid: str
    reason: str


class SuspendResumeController:
    def __init__(
        self,
        engine: ExecutionEngine,
        *,
        assign: Callable[[int, str], TaskRecord] | None = None,
    ) -> None:
        self._engine = engine
        self._tasks = engine.tasks
        self._manager = engine.manager
        self._assign = assign or self._tasks.reassign

    def suspend(self, task_id: int, reason: str) -> SuspendAck:
        """Park a running task. Its wid and output are kept as they are."""

        with self._manager.transaction():
            record = self._tasks.get(task_id)
            require_state(record, TaskState.RUNNING, "suspend")
            parked = self._tasks.transition(
                task_id,
                TaskState.PENDING,
                suspend_reason=reason,
                event="suspended",
                details={"reason": reason},
            )

        logger.info(
            "Task suspended", extra={"task_id": task_id, "wid": parked.wid, "reason": reason}
        )
        return SuspendAck(task_id=task_id, wid=parked.wid, reason=reason)

    def resume(
        self,
        task_id: int,
        decision: ResumeDecision | str,
        *,
        planid: str | None = None,
    ) -> TaskRecord:
        """Re-admit a pending task with an explicit `next` or `retry` decision.

        Passing `planid` hands the task to another plan entry as part of the
        same transaction.
        """

        decision = ResumeDecision(decision)
        with self._manager.transaction():
            record = self._tasks.get(task_id)
            require_state(record, TaskState.PENDING, "resume")
            if planid is not None and planid != record.planid:
                self._assign(task_id, planid)
            resumed = self._engine.resume(task_id, decision)

        logger.info(
            "Task resumed",
            extra={
                "task_id": task_id,
                "decision": decision.value,
                "wid": resumed.wid,
                "state": resumed.state.value,
            },
        )
        return resumed

    def pending(self, planid: str | None = None) -> list[TaskRecord]:
        return self._tasks.list_pending(planid)
