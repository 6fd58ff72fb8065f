"""Shared test doubles."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from agent_task_engine.engine.agents import AgentRegistry, AgentResult, InvocationContext
from agent_task_engine.workflow.graph import WorkflowNode


class ScriptedAgent:
    """Agent that replays scripted results; the last one repeats forever.

    Exceptions are raised, AgentResults returned as-is, anything else becomes
    the output.
    """

    def __init__(self, *results: object, compensate: Callable[..., Any] | None = None) -> None:
        self.results = list(results)
        self.calls: list[tuple[str, int]] = []
        if compensate is not None:
            self.compensate = compensate

    def invoke(self, node: WorkflowNode, input: object, context: InvocationContext) -> AgentResult:
        self.calls.append((node.id, context.attempt))
        item = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, AgentResult):
            return item
        return AgentResult(output=item)


def _undo(entry: Any) -> dict[str, int]:
    return {"undid": entry.ordinal}


def article_registry() -> AgentRegistry:
    """Reversible agents for the article workflow, loadable through ``--agents``."""
    registry = AgentRegistry(default="writer")
    registry.register("writer", ScriptedAgent("draft text", compensate=_undo))
    registry.register("reviewer", ScriptedAgent({"verdict": "approve"}), compensator=_undo)
    registry.register("publisher", ScriptedAgent("published"), compensator=_undo)
    return registry.bind("review", "reviewer").bind("publish", "publisher")


def gated_registry() -> AgentRegistry:
    """Like :func:`article_registry`, but review asks for a human sign-off."""
    registry = article_registry()
    registry.register(
        "reviewer", ScriptedAgent(AgentResult(output={"verdict": "approve"}, suspend="sign-off"))
    )
    return registry


def failing_registry() -> AgentRegistry:
    registry = AgentRegistry(default="writer")
    return registry.register("writer", ScriptedAgent(RuntimeError("model unavailable")))
