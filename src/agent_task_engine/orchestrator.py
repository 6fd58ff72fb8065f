"""Main orchestrator implementation."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from agent_task_engine.config import EngineSettings
from agent_task_engine.engine.agents import AgentRegistry
from agent_task_engine.engine.executor import ExecutionEngine
from agent_task_engine.engine.suspend import SuspendResumeController
from agent_task_engine.errors import EngineError, WorkflowDefinitionError
from agent_task_engine.plan.controller import PlanController
from agent_task_engine.state.manager import StateManager
from agent_task_engine.state.models import PlanState, TaskRecord, TaskState
from agent_task_engine.state.task_store import TaskStore
from agent_task_engine.state.tool_log import ToolLog
from agent_task_engine.workflow.graph import WorkflowGraph
from agent_task_engine.workflow.loader import load_workflow

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PlanRunResult:
    """Where a plan run returned control.

    `awaiting` is a pending task that needs an explicit resume decision;
    `failure` is the error payload surfaced by a stopped or rolled-back step.
    """

    planid: str
    ran: list[int] = field(default_factory=list)
    awaiting: TaskRecord | None = None
    failure: dict[str, Any] | None = None

    def to_json(self) -> dict[str, object]:
        return {
            "planid": self.planid,
            "ran": list(self.ran),
            "awaiting": self.awaiting.model_dump(mode="json") if self.awaiting else None,
            "failure": self.failure,
        }


class Orchestrator:
    """Wires the workflow graph, durable state, engine and plan controller.

    The orchestrator drives plans through the engine but never resumes a
    pending task by itself; that always takes an explicit decision through
    :attr:`canvas`.
    """

    def __init__(
        self,
        settings: EngineSettings | None = None,
        *,
        graph: WorkflowGraph | None = None,
        agents: AgentRegistry | None = None,
        configure_logging: bool = True,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            settings: Configuration object. If None, loads from environment.
            graph: Pre-built workflow graph. If None, loads `settings.workflow_path`.
            agents: Agent bindings for workflow nodes.
            configure_logging: Whether to (re)configure root logging.
        """
        self.settings = settings or EngineSettings()
        if configure_logging:
            self.settings.setup_logging()

        self.graph = graph or self._load_graph()
        self.agents = agents or AgentRegistry()

        self.state = StateManager(self.settings.state_path)
        self.tool_log = ToolLog(self.state, compensators=self.agents.compensator)
        self.tasks = TaskStore(self.state, self.graph)
        self.plans = PlanController(self.state, self.tasks, self.tool_log)
        self.engine = ExecutionEngine(
            graph=self.graph,
            manager=self.state,
            tasks=self.tasks,
            tool_log=self.tool_log,
            agents=self.agents,
            plan_agent=self.plans.agent_for,
            max_agent_attempts=self.settings.max_agent_attempts,
            retry_delay_seconds=self.settings.retry_delay_seconds,
        )
        self.canvas = SuspendResumeController(self.engine, assign=self.plans.assign_task)

        logger.info(
            "Orchestrator initialized",
            extra={"workflow_id": self.graph.workflow_id, "state_path": str(self.state.path)},
        )

    def _load_graph(self) -> WorkflowGraph:
        if self.settings.workflow_path is None:
            raise WorkflowDefinitionError("No workflow configured (AGENT_TASK_WORKFLOW_PATH)")
        return load_workflow(
            self.settings.workflow_path,
            default_loop_max_iterations=self.settings.default_loop_max_iterations,
        )

    def run_plan(self, planid: str, *, max_tasks: int | None = None) -> PlanRunResult:
        """Drive the tasks of a plan until it needs attention or runs dry."""

        ran: list[int] = []
        while max_tasks is None or len(ran) < max_tasks:
            task = self._next_task(planid)
            if task is None:
                self._settle(planid)
                return PlanRunResult(planid=planid, ran=ran)
            if task.state is TaskState.PENDING:
                logger.info(
                    "Plan waiting on pending task",
                    extra={"planid": planid, "task_id": task.id, "reason": task.suspend_reason},
                )
                return PlanRunResult(planid=planid, ran=ran, awaiting=task)

            ran.append(task.id)
            failure = self._drive(task)
            if failure is not None:
                return PlanRunResult(planid=planid, ran=ran, failure=failure)

            record = self.tasks.get(task.id)
            if record.state is TaskState.PENDING:
                return PlanRunResult(planid=planid, ran=ran, awaiting=record)

        return PlanRunResult(planid=planid, ran=ran)

    def _next_task(self, planid: str) -> TaskRecord | None:
        # Resumed tasks are running, which select_next does not offer.
        for record in self.plans.tasks_under(planid):
            if record.state is TaskState.RUNNING:
                return record
        return self.plans.select_next(planid)

    def recover(self) -> list[TaskRecord]:
        """Re-drive records left `running` by a previous process.

        The persisted `wid` is the node whose step never committed, so it runs
        again from scratch. A record that fails again is reported to
        its plan and left for a human; the rest are still recovered.
        """

        recovered: list[TaskRecord] = []
        for record in self.tasks.list(state=TaskState.RUNNING):
            logger.info("Recovering task", extra={"task_id": record.id, "wid": record.wid})
            self._drive(record)
            recovered.append(self.tasks.get(record.id))
        return recovered

    def _drive(self, task: TaskRecord) -> dict[str, Any] | None:
        try:
            record = self.engine.run(task.id)
        except EngineError as e:
            logger.error(
                "Task step failed", extra={"task_id": task.id, "error": e.to_payload()}
            )
            failure = {**e.to_payload(), "task_id": task.id}
            if task.planid is not None:
                self.plans.record_failure(task.planid, failure)
            return failure

        if record.state is TaskState.STOPPED:
            failure = {**(record.error or {}), "task_id": record.id}
            if record.planid is not None:
                self.plans.record_failure(record.planid, failure)
            return failure
        return None

    def _settle(self, planid: str) -> None:
        tasks = self.plans.tasks_under(planid)
        if tasks and all(t.state is TaskState.COMPLETED for t in tasks):
            self.plans.mark(planid, PlanState.SUCCEEDED)
