#!/usr/bin/env python3
"""Programmatic engine example.

This demonstrates using the engine components directly:

* load a workflow from `examples/article.yaml`
* bind plain functions to workflow nodes
* drive a plan until the reviewer asks for a human decision
* resume the parked task and reverse its tool calls

State is kept in the file given by `--state` (in memory when omitted).
"""

from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Sequence

from agent_task_engine.config import EngineSettings
from agent_task_engine.engine import AgentRegistry, AgentResult, FunctionAgent
from agent_task_engine.orchestrator import Orchestrator
from agent_task_engine.state import ResumeDecision, ToolLogEntry
from agent_task_engine.workflow import load_workflow

HERE = Path(__file__).resolve().parent


def _write(node, input, context):
    return f"Draft about {input['topic']} (attempt {context.attempt})"


def _review(node, input, context):
    # Park every draft for an editor; the verdict is already recorded.
    return AgentResult(output={"verdict": "approve"}, suspend="editor sign-off")


def _publish(node, input, context):
    return {"url": f"https://example.invalid/{context.workid}"}


def _unpublish(entry: ToolLogEntry) -> dict[str, str]:
    return {"removed": entry.response["url"]}


def build_agents() -> AgentRegistry:
    registry = AgentRegistry(default="writer")
    registry.register("writer", FunctionAgent(_write), compensator=lambda entry: None)
    registry.register("reviewer", FunctionAgent(_review)).bind("review", "reviewer")
    registry.register("publisher", FunctionAgent(_publish), compensator=_unpublish)
    return registry.bind("publish", "publisher")


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the article workflow end to end.")
    parser.add_argument("--topic", default="tides", help="Article topic")
    parser.add_argument("--state", type=Path, default=None, help="State file (optional)")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    settings = EngineSettings(state_path=args.state, log_json=False)
    orchestrator = Orchestrator(
        settings, graph=load_workflow(HERE / "article.yaml"), agents=build_agents()
    )

    orchestrator.plans.create_plan("launch", title="Launch article")
    task = orchestrator.plans.spawn_task("launch", {"topic": args.topic})

    result = orchestrator.run_plan("launch")
    if result.awaiting is None:
        print(json.dumps(result.to_json(), indent=2))
        return 1
    print(f"Task {task.id} waiting at {result.awaiting.wid!r}: {result.awaiting.suspend_reason}")

    orchestrator.canvas.resume(task.id, ResumeDecision.NEXT)
    result = orchestrator.run_plan("launch")
    print(f"Plan state: {orchestrator.plans.get('launch').state.value}")

    for entry in orchestrator.tool_log.history(task.workid):
        print(f"  #{entry.ordinal} {entry.tool} -> {entry.response}")

    report = orchestrator.plans.reverse(task.workid, 1)
    print(f"Reversed {report.reversed}; complete={report.complete}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
