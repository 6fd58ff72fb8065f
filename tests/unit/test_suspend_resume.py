"""Unit tests for the suspend/resume boundary and cancellation."""

from __future__ import annotations

from collections.abc import Callable

import pytest

from agent_task_engine.engine import AgentRegistry, AgentResult
from agent_task_engine.errors import InvalidState, NotFound, TerminalStateViolation
from agent_task_engine.orchestrator import Orchestrator
from agent_task_engine.state import ResumeDecision, TaskState
from agent_task_engine.workflow import WorkflowGraph
from helpers import ScriptedAgent

MakeOrchestrator = Callable[[WorkflowGraph, AgentRegistry], Orchestrator]


def _running_at_publish(orch: Orchestrator) -> int:
    task = orch.tasks.create("x")
    orch.engine.run(task.id, max_steps=2)
    return task.id


def test_suspend_keeps_position_and_output(article: Orchestrator) -> None:
    task_id = _running_at_publish(article)

    ack = article.canvas.suspend(task_id, "legal review")

    assert (ack.task_id, ack.wid, ack.reason) == (task_id, "publish", "legal review")
    parked = article.tasks.get(task_id)
    assert parked.state is TaskState.PENDING
    assert parked.output == {"verdict": "approve"}
    assert [t.id for t in article.canvas.pending()] == [task_id]


def test_suspend_requires_running(article: Orchestrator) -> None:
    task = article.tasks.create("x")
    with pytest.raises(InvalidState):
        article.canvas.suspend(task.id, "too early")

    done = article.engine.run(task.id)
    assert done.state is TaskState.COMPLETED
    with pytest.raises(TerminalStateViolation):
        article.canvas.suspend(task.id, "too late")


def test_pending_task_is_never_stepped(article: Orchestrator) -> None:
    task_id = _running_at_publish(article)
    article.canvas.suspend(task_id, "hold")

    with pytest.raises(InvalidState):
        article.engine.step(task_id)
    with pytest.raises(InvalidState):
        article.engine.run(task_id)


def test_resume_retry_reruns_current_node(article: Orchestrator) -> None:
    task_id = _running_at_publish(article)
    workid = article.tasks.get(task_id).workid
    article.canvas.suspend(task_id, "redo")

    resumed = article.canvas.resume(task_id, ResumeDecision.RETRY)

    assert resumed.state is TaskState.RUNNING
    assert resumed.wid == "publish"
    assert resumed.output is None
    assert len(article.tool_log.history(workid)) == 2

    done = article.engine.run(task_id)
    assert done.state is TaskState.COMPLETED
    assert [e.node_id for e in article.tool_log.history(workid)] == ["draft", "review", "publish"]


def test_resume_next_past_final_node_completes(article: Orchestrator) -> None:
    task_id = _running_at_publish(article)
    article.canvas.suspend(task_id, "skip publishing")

    done = article.canvas.resume(task_id, "next")

    assert done.state is TaskState.COMPLETED
    assert done.output == {"verdict": "approve"}
    kinds = [e.kind for e in article.tasks.history(task_id)]
    assert kinds[-3:] == ["suspended", "resumed", "completed"]


def test_resume_next_follows_stored_output(
    make_orchestrator: MakeOrchestrator, article_graph: WorkflowGraph
) -> None:
    agents = AgentRegistry(default="writer").register("writer", ScriptedAgent("draft text"))
    agents.register(
        "reviewer",
        ScriptedAgent(AgentResult(output={"verdict": "revise"}, suspend="confirm rework")),
    ).bind("review", "reviewer")
    orch = make_orchestrator(article_graph, agents)
    task = orch.tasks.create("x")
    assert orch.engine.run(task.id).state is TaskState.PENDING

    resumed = orch.canvas.resume(task.id, ResumeDecision.NEXT)

    assert resumed.state is TaskState.RUNNING
    assert resumed.wid == "rework"


def test_resume_requires_pending(article: Orchestrator) -> None:
    task_id = _running_at_publish(article)
    with pytest.raises(InvalidState):
        article.canvas.resume(task_id, ResumeDecision.NEXT)
    with pytest.raises(ValueError):
        article.canvas.resume(task_id, "skip")


def test_resume_can_hand_task_to_another_plan(article: Orchestrator) -> None:
    article.plans.create_plan("root")
    article.plans.insert_subplan("escalations", "root")
    task = article.plans.spawn_task("root", "x")
    article.engine.run(task.id, max_steps=1)
    article.canvas.suspend(task.id, "escalate")

    resumed = article.canvas.resume(task.id, ResumeDecision.RETRY, planid="escalations")

    assert resumed.planid == "escalations"
    assert "reassigned" in [e.kind for e in article.tasks.history(task.id)]
    assert article.plans.get("root").task_ids == []
    assert article.plans.get("escalations").task_ids == [task.id]


def test_resume_into_unknown_plan_changes_nothing(article: Orchestrator) -> None:
    task_id = _running_at_publish(article)
    article.canvas.suspend(task_id, "hold")

    with pytest.raises(NotFound):
        article.canvas.resume(task_id, ResumeDecision.RETRY, planid="ghost")

    assert article.tasks.get(task_id).state is TaskState.PENDING


def test_cancel_only_from_running(article: Orchestrator) -> None:
    task_id = _running_at_publish(article)
    article.canvas.suspend(task_id, "hold")
    with pytest.raises(InvalidState):
        article.engine.cancel(task_id)

    article.canvas.resume(task_id, ResumeDecision.RETRY)
    cancelled = article.engine.cancel(task_id, "duplicate work")

    assert cancelled.state is TaskState.CANCELLED
    assert article.tasks.history(task_id)[-1].details == {"reason": "duplicate work"}
    with pytest.raises(TerminalStateViolation):
        article.engine.cancel(task_id)
    with pytest.raises(TerminalStateViolation):
        article.canvas.resume(task_id, ResumeDecision.NEXT)


def test_suspension_survives_restart(
    make_orchestrator: MakeOrchestrator,
    article_graph: WorkflowGraph,
    article_agents: AgentRegistry,
) -> None:
    first = make_orchestrator(article_graph, article_agents)
    task_id = _running_at_publish(first)
    first.canvas.suspend(task_id, "overnight")

    second = make_orchestrator(article_graph, article_agents)
    parked = second.tasks.get(task_id)
    assert parked.state is TaskState.PENDING
    assert parked.suspend_reason == "overnight"

    second.canvas.resume(task_id, ResumeDecision.RETRY)
    assert second.engine.run(task_id).state is TaskState.COMPLETED
