"""Drive one task record through the workflow graph.

Each step runs inside a single state transaction: the tool log entry, the new
`wid`/`output`/`state` and the task events either all become durable together
or none of them do.

Failure handling per step:
  - agent errors (raised, returned, or output that is not plain JSON) are
    retried on the same node up to `max_agent_attempts`, then the task is
    stopped with the error payload
  - a failed check stops the task, unless the node is `retryable`, in which
    case it consumes an attempt like an agent error
  - `LoopBoundExceeded` stops the task immediately
  - `UnmatchedBranch` rolls the whole step back and propagates
  - a task suspended or cancelled while its agent runs keeps the state it was
    put in; only the invocation is logged
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from agent_task_engine.engine.agents import (
    AgentRegistry,
    AgentResult,
    InvocationContext,
    is_json_value,
)
from agent_task_engine.errors import (
    AgentInvocationFailure,
    CheckFailed,
    EngineError,
    InvalidState,
    LoopBoundExceeded,
    TerminalStateViolation,
    UnmatchedBranch,
)
from agent_task_engine.logging import task_context
from agent_task_engine.state.manager import StateManager
from agent_task_engine.state.models import ResumeDecision, TaskRecord, TaskState
from agent_task_engine.state.task_store import TaskStore
from agent_task_engine.state.tool_log import ToolLog
from agent_task_engine.workflow.checks import CheckOutcome
from agent_task_engine.workflow.graph import NodeAction, WorkflowGraph, WorkflowNode

logger = logging.getLogger(__name__)

PlanAgentLookup = Callable[[str | None], str | None]


@dataclass(frozen=True, slots=True)
class StepResult:
    task: TaskRecord
    node_id: str
    attempts: int
    ordinal: int | None = None

    @property
    def error(self) -> dict[str, Any] | None:
        return self.task.error if self.task.state is TaskState.STOPPED else None


def require_state(record: TaskRecord, expected: TaskState, operation: str) -> None:
    if record.state is expected:
        return
    if record.is_terminal:
        raise TerminalStateViolation(
            f"Cannot {operation} task {record.id}: it is {record.state.value}",
            task_id=record.id,
            state=record.state.value,
        )
    raise InvalidState(
        f"Cannot {operation} task {record.id}: it is {record.state.value}, "
        f"expected {expected.value}",
        task_id=record.id,
        state=record.state.value,
    )


class ExecutionEngine:
    """Single logical execution thread over task records.

    The engine only ever touches records in `running`; suspension and
    resumption go through :class:`SuspendResumeController`.
    """

    def __init__(
        self,
        *,
        graph: WorkflowGraph,
        manager: StateManager,
        tasks: TaskStore,
        tool_log: ToolLog,
        agents: AgentRegistry,
        plan_agent: PlanAgentLookup | None = None,
        max_agent_attempts: int = 3,
        retry_delay_seconds: float = 0.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_agent_attempts < 1:
            raise ValueError("max_agent_attempts must be at least 1")
        self.graph = graph
        self.manager = manager
        self.tasks = tasks
        self.tool_log = tool_log
        self.agents = agents
        self._plan_agent = plan_agent
        self.max_agent_attempts = max_agent_attempts
        self.retry_delay_seconds = retry_delay_seconds
        self._sleep = sleep

    def start(self, task_id: int) -> TaskRecord:
        record = self.tasks.get(task_id)
        require_state(record, TaskState.CREATED, "start")
        return self.tasks.transition(task_id, TaskState.RUNNING, event="started")

    def cancel(self, task_id: int, reason: str | None = None) -> TaskRecord:
        with self.manager.transaction():
            record = self.tasks.get(task_id)
            require_state(record, TaskState.RUNNING, "cancel")
            return self.tasks.transition(
                task_id,
                TaskState.CANCELLED,
                event="cancelled",
                details={"reason": reason} if reason else None,
            )

    def run(self, task_id: int, *, max_steps: int | None = None) -> TaskRecord:
        """Step a task until it leaves `running` or `max_steps` is reached."""

        record = self.tasks.get(task_id)
        if record.state is TaskState.CREATED:
            record = self.start(task_id)
        require_state(record, TaskState.RUNNING, "run")

        steps = 0
        while record.state is TaskState.RUNNING:
            if max_steps is not None and steps >= max_steps:
                break
            record = self.step(task_id).task
            steps += 1

        logger.info(
            "Task run returned",
            extra={"task_id": task_id, "state": record.state.value, "steps": steps},
        )
        return record

    def step(self, task_id: int) -> StepResult:
        """Execute the current node of a running task and persist the transition."""

        with self.manager.transaction():
            record = self.tasks.get(task_id)
            require_state(record, TaskState.RUNNING, "step")
            with task_context(
                task_id=record.id, workid=record.workid, planid=record.planid, wid=record.wid
            ):
                return self._execute(record)

    def _execute(self, record: TaskRecord) -> StepResult:
        task_id = record.id
        node = self.graph.resolve(record.wid)
        plan_agent = self._plan_agent(record.planid) if self._plan_agent else None
        agent_name, agent = self.agents.resolve(node, plan_agent)

        failure: EngineError | None = None
        attempt = 0
        while attempt < self.max_agent_attempts:
            attempt += 1
            if attempt > 1:
                self._pause_before_retry(record, node, attempt, failure)

            context = InvocationContext(
                task_id=record.id,
                workid=record.workid,
                planid=record.planid,
                attempt=attempt,
                previous_output=record.output,
            )
            try:
                result: AgentResult | None = agent.invoke(node, record.input, context)
            except Exception as e:
                logger.warning(
                    "Agent invocation raised",
                    extra={"node_id": node.id, "attempt": attempt},
                    exc_info=True,
                )
                result = None
                failure = AgentInvocationFailure(
                    str(e) or type(e).__name__,
                    node_id=node.id,
                    agent=agent_name,
                    attempts=attempt,
                )

            # The agent, or whoever it calls back into, may have suspended or
            # cancelled the task while we held the step open.
            current = self.tasks.get(task_id)
            if current.state is not TaskState.RUNNING:
                return self._abandon(current, node, agent_name, attempt, result)

            if result is None:
                continue
            if not result.ok:
                failure = AgentInvocationFailure(
                    result.error or "agent reported an error",
                    node_id=node.id,
                    agent=agent_name,
                    attempts=attempt,
                )
                continue
            if not is_json_value(result.output):
                failure = AgentInvocationFailure(
                    f"Agent output of type {type(result.output).__name__} is not plain JSON",
                    node_id=node.id,
                    agent=agent_name,
                    attempts=attempt,
                )
                continue

            ordinal = self._record_invocation(record, node, agent_name, attempt, result)

            if result.suspend is not None:
                task = self.tasks.transition(
                    task_id,
                    TaskState.PENDING,
                    output=result.output,
                    suspend_reason=result.suspend,
                    event="suspended",
                    details={"reason": result.suspend, "by": agent_name},
                    expected=TaskState.RUNNING,
                )
                return StepResult(task=task, node_id=node.id, attempts=attempt, ordinal=ordinal)

            outcome = node.check.evaluate(result.output)
            if not outcome.passed and node.action in (NodeAction.CALL, NodeAction.GOTO):
                failure = CheckFailed(
                    f"Check {node.check.kind.value!r} failed on node {node.id!r}",
                    node_id=node.id,
                    attempts=attempt,
                    check=node.check.model_dump(mode="json"),
                )
                if node.retryable:
                    continue
                task = self._stop(record, failure, output=result.output)
                return StepResult(task=task, node_id=node.id, attempts=attempt, ordinal=ordinal)

            task = self._advance(record, node, outcome, output=result.output, ordinal=ordinal)
            return StepResult(task=task, node_id=node.id, attempts=attempt, ordinal=ordinal)

        assert failure is not None
        task = self._stop(record, failure)
        return StepResult(task=task, node_id=node.id, attempts=attempt)

    def resume(self, task_id: int, decision: ResumeDecision) -> TaskRecord:
        """Re-admit a pending task.

        `retry` re-runs the current node from scratch: the prior output is
        discarded, tool log entries are kept. `next` applies the normal successor
        rule to the output recorded when the task was suspended.
        """

        with self.manager.transaction():
            record = self.tasks.get(task_id)
            require_state(record, TaskState.PENDING, "resume")
            details = {"decision": decision.value}

            if decision is ResumeDecision.RETRY:
                return self.tasks.transition(
                    task_id, TaskState.RUNNING, output=None, event="resumed", details=details
                )

            node = self.graph.resolve(record.wid)
            outcome = node.check.evaluate(record.output)
            resumed = self.tasks.transition(
                task_id, TaskState.RUNNING, event="resumed", details=details
            )
            return self._advance(resumed, node, outcome, output=record.output)

    def _advance(
        self,
        record: TaskRecord,
        node: WorkflowNode,
        outcome: CheckOutcome,
        *,
        output: object,
        ordinal: int | None = None,
    ) -> TaskRecord:
        iteration = record.visits.get(node.id, 0) + 1 if node.action is NodeAction.LOOP else 1
        try:
            successor = self.graph.next(node.id, outcome, iteration=iteration)
        except LoopBoundExceeded as e:
            return self._stop(record, e, output=output)
        except UnmatchedBranch:
            logger.error(
                "Branch did not match; step rolled back",
                extra={
                    "task_id": record.id,
                    "node_id": node.id,
                    "discriminant": outcome.discriminant,
                },
            )
            raise

        visits = dict(record.visits)
        if node.action is NodeAction.LOOP and not outcome.passed:
            visits[node.id] = iteration
        else:
            visits.pop(node.id, None)

        if successor is None:
            return self.tasks.transition(
                record.id,
                TaskState.COMPLETED,
                output=output,
                visits=visits,
                event="completed",
                details={"node_id": node.id, "ordinal": ordinal},
                expected=TaskState.RUNNING,
            )
        return self.tasks.transition(
            record.id,
            TaskState.RUNNING,
            wid=successor,
            output=output,
            visits=visits,
            event="step",
            details={"from": node.id, "to": successor, "ordinal": ordinal, "iteration": iteration},
            expected=TaskState.RUNNING,
        )

    def _record_invocation(
        self,
        record: TaskRecord,
        node: WorkflowNode,
        agent_name: str,
        attempt: int,
        result: AgentResult,
    ) -> int:
        return self.tool_log.append(
            workid=record.workid,
            tool=agent_name,
            request={"node": node.id, "code": node.code, "input": record.input, "attempt": attempt},
            response=result.output,
            planid=record.planid,
            task_id=record.id,
            node_id=node.id,
        )

    def _abandon(
        self,
        current: TaskRecord,
        node: WorkflowNode,
        agent_name: str,
        attempt: int,
        result: AgentResult | None,
    ) -> StepResult:
        """Leave a task that stopped running mid-step exactly where it was put.

        A successful invocation still happened, so it is logged; its output is
        not applied to the record.
        """
        ordinal = None
        if result is not None and result.ok and is_json_value(result.output):
            ordinal = self._record_invocation(current, node, agent_name, attempt, result)
        logger.info(
            "Task left running during the agent call; step abandoned",
            extra={"node_id": node.id, "state": current.state.value, "ordinal": ordinal},
        )
        return StepResult(task=current, node_id=node.id, attempts=attempt, ordinal=ordinal)

    def _stop(self, record: TaskRecord, error: EngineError, **changes: Any) -> TaskRecord:
        logger.error(
            "Task stopped",
            extra={"task_id": record.id, "wid": record.wid, "error": error.to_payload()},
        )
        return self.tasks.transition(
            record.id,
            TaskState.STOPPED,
            error=error.to_payload(),
            event="stopped",
            details={"error": type(error).__name__},
            expected=TaskState.RUNNING,
            **changes,
        )

    def _pause_before_retry(
        self,
        record: TaskRecord,
        node: WorkflowNode,
        attempt: int,
        failure: EngineError | None,
    ) -> None:
        self.tasks.record_event(
            record.id,
            "retry",
            {"node_id": node.id, "attempt": attempt, "error": failure.message if failure else None},
        )
        logger.info(
            "Retrying node",
            extra={"task_id": record.id, "node_id": node.id, "attempt": attempt},
        )
        if self.retry_delay_seconds > 0:
            self._sleep(self.retry_delay_seconds)
