"""Test configuration and fixtures."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from agent_task_engine.config import EngineSettings
from agent_task_engine.engine.agents import AgentRegistry
from agent_task_engine.orchestrator import Orchestrator
from agent_task_engine.workflow.graph import WorkflowGraph
from agent_task_engine.workflow.loader import build_graph
from helpers import ScriptedAgent

ARTICLE_WORKFLOW: dict[str, Any] = {
    "workflow": {
        "id": "article",
        "name": "Article pipeline",
        "entry": "draft",
        "nodes": [
            {
                "id": "draft",
                "code": "write_draft",
                "action": "call",
                "check": {"kind": "non_empty"},
            },
            {
                "id": "review",
                "pid": "draft",
                "code": "review",
                "action": "branch",
                "check": {"kind": "always", "field": "verdict"},
                "branches": {"approve": "publish", "revise": "rework"},
            },
            {
                "id": "rework",
                "pid": "review",
                "code": "rework",
                "action": "goto",
                "target": "draft",
                "type": "backtrack",
            },
            {"id": "publish", "pid": "review", "code": "publish", "action": "call"},
        ],
    }
}

POLL_WORKFLOW: dict[str, Any] = {
    "workflow": {
        "id": "poll",
        "nodes": [
            {
                "id": "poll",
                "code": "poll",
                "action": "loop",
                "type": "loop_repeat",
                "check": {"kind": "equals", "field": "status", "value": "done"},
                "max_iterations": 3,
            },
            {"id": "finish", "pid": "poll", "code": "finish"},
        ],
    }
}


@pytest.fixture
def temp_state_dir(tmp_path: Path) -> Path:
    """Provide a temporary state directory."""
    state_dir = tmp_path / ".state"
    state_dir.mkdir()
    return state_dir


@pytest.fixture
def settings(temp_state_dir: Path) -> EngineSettings:
    """Provide test engine settings backed by a temporary state file."""
    return EngineSettings(
        _env_file=None,
        state_path=temp_state_dir / "engine_state.json",
        log_level="DEBUG",
        log_json=False,
    )


@pytest.fixture
def article_graph() -> WorkflowGraph:
    return build_graph(ARTICLE_WORKFLOW)


@pytest.fixture
def poll_graph() -> WorkflowGraph:
    return build_graph(POLL_WORKFLOW)


@pytest.fixture
def article_agents() -> AgentRegistry:
    """Writer drafts, reviewer approves, publisher publishes."""
    registry = AgentRegistry(default="writer")
    registry.register("writer", ScriptedAgent("draft text"))
    registry.register("reviewer", ScriptedAgent({"verdict": "approve"})).bind("review", "reviewer")
    registry.register("publisher", ScriptedAgent("published")).bind("publish", "publisher")
    return registry


@pytest.fixture
def make_orchestrator(
    settings: EngineSettings,
) -> Callable[[WorkflowGraph, AgentRegistry], Orchestrator]:
    def _make(graph: WorkflowGraph, agents: AgentRegistry) -> Orchestrator:
        return Orchestrator(settings, graph=graph, agents=agents, configure_logging=False)

    return _make


@pytest.fixture
def article(
    make_orchestrator: Callable[[WorkflowGraph, AgentRegistry], Orchestrator],
    article_graph: WorkflowGraph,
    article_agents: AgentRegistry,
) -> Orchestrator:
    return make_orchestrator(article_graph, article_agents)
