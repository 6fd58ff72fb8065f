"""Hierarchical plan tree owned by the supervising agent.

The plan controller decides what runs next and who runs it. It never changes a
task's lifecycle state; that stays with the execution engine and the
suspend/resume boundary.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any

from agent_task_engine.errors import InvalidState, IrreversibleEntry, NotFound
from agent_task_engine.state.manager import StateManager
from agent_task_engine.state.models import (
    ExecutionState,
    PlanEntry,
    PlanState,
    TaskRecord,
    TaskState,
)
from agent_task_engine.state.task_store import TaskStore
from agent_task_engine.state.tool_log import ToolLog

logger = logging.getLogger(__name__)

SELECTABLE_STATES = frozenset({TaskState.CREATED, TaskState.PENDING})


@dataclass(frozen=True, slots=True)
class ReversalReport:
    """What a rollback actually undid.

    When `failed_ordinal` is set, entries below it were left untouched.
    """

    workid: str
    upto_ordinal: int
    reversed: list[int] = field(default_factory=list)
    failed_ordinal: int | None = None
    error: dict[str, Any] | None = None

    @property
    def complete(self) -> bool:
        return self.failed_ordinal is None

    def to_json(self) -> dict[str, object]:
        out = asdict(self)
        out["complete"] = self.complete
        return out


class PlanController:
    def __init__(self, manager: StateManager, tasks: TaskStore, tool_log: ToolLog) -> None:
        self._manager = manager
        self._tasks = tasks
        self._tool_log = tool_log

    def create_plan(
        self, planid: str, *, title: str = "", agent: str | None = None
    ) -> PlanEntry:
        with self._manager.transaction() as state:
            if planid in state.plans:
                raise InvalidState(f"Plan already exists: {planid}", planid=planid)
            entry = PlanEntry(id=planid, title=title, agent=agent)
            state.plans[planid] = entry
        logger.info("Plan created", extra={"planid": planid})
        return entry.model_copy(deep=True)

    def get(self, planid: str) -> PlanEntry:
        with self._manager.reading() as state:
            return self._plan(state, planid).model_copy(deep=True)

    def insert_subplan(
        self,
        planid: str,
        parent_planid: str,
        position: int | None = None,
        *,
        title: str = "",
        agent: str | None = None,
    ) -> PlanEntry:
        """Insert a new sub-plan, or move an existing one, under `parent_planid`.

        `position` indexes the parent's declared sub-plan order; None appends.
        """

        with self._manager.transaction() as state:
            parent = self._plan(state, parent_planid)
            if planid in state.plans:
                entry = state.plans[planid]
                if planid == parent_planid or planid in self._ancestors(state, parent_planid):
                    raise InvalidState(
                        f"Cannot move plan {planid!r} under its own descendant {parent_planid!r}",
                        planid=planid,
                        parent_planid=parent_planid,
                    )
                if entry.pid is not None:
                    old_parent = self._plan(state, entry.pid)
                    old_parent.subplans = [p for p in old_parent.subplans if p != planid]
                    if old_parent.current == planid:
                        old_parent.current = None
                entry.pid = parent_planid
            else:
                entry = PlanEntry(id=planid, pid=parent_planid, title=title, agent=agent)
                state.plans[planid] = entry

            index = len(parent.subplans) if position is None else max(0, position)
            parent.subplans.insert(min(index, len(parent.subplans)), planid)
            result = entry.model_copy(deep=True)

        logger.info(
            "Sub-plan inserted",
            extra={"planid": planid, "parent_planid": parent_planid, "position": position},
        )
        return result

    def spawn_task(
        self,
        planid: str,
        input: Any,
        *,
        wid: str | None = None,
        workid: str | None = None,
    ) -> TaskRecord:
        with self._manager.transaction() as state:
            plan = self._plan(state, planid)
            record = self._tasks.create(input, wid=wid, planid=planid, workid=workid)
            plan.task_ids.append(record.id)
        return record

    def assign_task(self, task_id: int, planid: str) -> TaskRecord:
        """Hand a task to another plan entry."""
        with self._manager.transaction() as state:
            target = self._plan(state, planid)
            record = self._tasks.get(task_id)
            if record.planid is not None and record.planid in state.plans:
                source = state.plans[record.planid]
                source.task_ids = [t for t in source.task_ids if t != task_id]
            if task_id not in target.task_ids:
                target.task_ids.append(task_id)
            return self._tasks.reassign(task_id, planid)

    def set_agent(self, planid: str, agent: str | None) -> PlanEntry:
        with self._manager.transaction() as state:
            plan = self._plan(state, planid)
            plan.agent = agent
            return plan.model_copy(deep=True)

    def agent_for(self, planid: str | None) -> str | None:
        """The agent of the nearest plan entry that names one."""
        if planid is None:
            return None
        with self._manager.reading() as state:
            current: str | None = planid
            while current is not None and current in state.plans:
                plan = state.plans[current]
                if plan.agent is not None:
                    return plan.agent
                current = plan.pid
        return None

    def select_next(self, planid: str) -> TaskRecord | None:
        """Next task to attend to under `planid`.

        Plans are visited depth-first in declared sub-plan order, a plan's own
        tasks before its sub-plans, ties broken by creation order. Only
        `created` and `pending` tasks qualify. The path to the chosen task is
        marked as the current sub-plan at every level.
        """

        with self._manager.transaction() as state:
            self._plan(state, planid)
            for path in self._walk(state, planid, ()):
                plan = state.plans[path[-1]]
                candidates = sorted(
                    (
                        state.tasks[t]
                        for t in plan.task_ids
                        if t in state.tasks and state.tasks[t].state in SELECTABLE_STATES
                    ),
                    key=lambda r: r.id,
                )
                if not candidates:
                    continue
                for parent_id, child_id in zip(path, path[1:]):
                    state.plans[parent_id].current = child_id
                return candidates[0].model_copy(deep=True)
        return None

    def tasks_under(self, planid: str) -> list[TaskRecord]:
        """Every task owned by `planid` or one of its sub-plans."""
        with self._manager.reading() as state:
            self._plan(state, planid)
            ids = [
                t for path in self._walk(state, planid, ()) for t in state.plans[path[-1]].task_ids
            ]
            return [state.tasks[t].model_copy(deep=True) for t in sorted(ids) if t in state.tasks]

    def mark(self, planid: str, plan_state: PlanState) -> PlanEntry:
        with self._manager.transaction() as state:
            plan = self._plan(state, planid)
            plan.state = plan_state
            return plan.model_copy(deep=True)

    def record_failure(self, planid: str, error: dict[str, Any]) -> None:
        """Surface a step failure to the plan for a human or supervisor to act on."""
        with self._manager.transaction() as state:
            self._plan(state, planid).last_error = error
        logger.warning("Plan notified of failure", extra={"planid": planid, "error": error})

    def reverse(self, workid: str, upto_ordinal: int) -> ReversalReport:
        """Undo tool calls from the most recent down to `upto_ordinal`.

        Compensations run in strict reverse-ordinal order and stop at the first
        entry that cannot be reversed; the owning plan records the boundary.
        """

        history = self._tool_log.history(workid)
        if not 1 <= upto_ordinal <= len(history):
            raise NotFound(
                f"Tool log entry not found: {workid}#{upto_ordinal}",
                workid=workid,
                ordinal=upto_ordinal,
            )

        targets = [
            e
            for e in reversed(history)
            if e.ordinal >= upto_ordinal and e.compensates is None and not e.reversed
        ]
        done: list[int] = []
        report = ReversalReport(workid=workid, upto_ordinal=upto_ordinal, reversed=done)
        for entry in targets:
            try:
                self._tool_log.reverse_entry(workid, entry.ordinal)
            except IrreversibleEntry as e:
                report = ReversalReport(
                    workid=workid,
                    upto_ordinal=upto_ordinal,
                    reversed=done,
                    failed_ordinal=entry.ordinal,
                    error=e.to_payload(),
                )
                logger.warning(
                    "Rollback stopped at irreversible entry",
                    extra={"workid": workid, "ordinal": entry.ordinal, "reversed": done},
                )
                break
            done.append(entry.ordinal)

        self._note_boundary(targets, report)
        return report

    def tree(self, planid: str) -> dict[str, Any]:
        with self._manager.reading() as state:
            return self._tree(state, planid)

    def _tree(self, state: ExecutionState, planid: str) -> dict[str, Any]:
        plan = self._plan(state, planid)
        return {
            "id": plan.id,
            "title": plan.title,
            "state": plan.state.value,
            "agent": plan.agent,
            "current": plan.current,
            "tasks": [
                {"id": t, "state": state.tasks[t].state.value, "wid": state.tasks[t].wid}
                for t in plan.task_ids
                if t in state.tasks
            ],
            "subplans": [self._tree(state, child) for child in plan.subplans],
        }

    def _note_boundary(self, targets: list[Any], report: ReversalReport) -> None:
        planids = {e.planid for e in targets if e.planid is not None}
        if not planids:
            return
        with self._manager.transaction() as state:
            for planid in planids:
                if planid in state.plans:
                    state.plans[planid].rollback_boundary = report.to_json()

    def _walk(
        self, state: ExecutionState, planid: str, prefix: tuple[str, ...]
    ) -> list[tuple[str, ...]]:
        path = prefix + (planid,)
        paths = [path]
        for child in state.plans[planid].subplans:
            if child in state.plans:
                paths.extend(self._walk(state, child, path))
        return paths

    @staticmethod
    def _ancestors(state: ExecutionState, planid: str) -> set[str]:
        seen: set[str] = set()
        current = state.plans[planid].pid if planid in state.plans else None
        while current is not None and current not in seen:
            seen.add(current)
            current = state.plans[current].pid if current in state.plans else None
        return seen

    @staticmethod
    def _plan(state: ExecutionState, planid: str) -> PlanEntry:
        try:
            return state.plans[planid]
        except KeyError:
            raise NotFound(f"Plan not found: {planid}", planid=planid) from None
