"""CLI entrypoint for the task engine.

Every command is a thin wrapper over :class:`~agent_task_engine.orchestrator.Orchestrator`
and prints JSON to stdout. Logs go to stderr.
"""

from __future__ import annotations

import argparse
import importlib
import json
import logging
import sys
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ValidationError

from agent_task_engine import __version__
from agent_task_engine.config import EngineSettings
from agent_task_engine.engine.agents import AgentRegistry
from agent_task_engine.errors import EngineError
from agent_task_engine.logging import configure_logging
from agent_task_engine.orchestrator import Orchestrator
from agent_task_engine.state.models import ResumeDecision, TaskState
from agent_task_engine.workflow.loader import load_workflow

logger = logging.getLogger(__name__)


def _parse_input(value: str) -> Any:
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return value


def _load_agents(spec: str | None) -> AgentRegistry | None:
    """Import `package.module:factory` and call it to build the agent registry."""
    if spec is None:
        return None
    module_name, _, attr = spec.partition(":")
    if not module_name or not attr:
        raise ValueError(f"--agents must look like 'package.module:factory', got {spec!r}")
    factory = getattr(importlib.import_module(module_name), attr)
    registry = factory()
    if not isinstance(registry, AgentRegistry):
        raise TypeError(f"{spec} did not return an AgentRegistry")
    return registry


def _emit(payload: object) -> None:
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(mode="json")
    elif isinstance(payload, list):
        payload = [p.model_dump(mode="json") if isinstance(p, BaseModel) else p for p in payload]
    print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agent-task",
        description="Human-in-the-loop workflow engine for AI agent tasks",
    )
    parser.add_argument(
        "--version", action="version", version=f"agent-task-engine {__version__}"
    )
    parser.add_argument(
        "--workflow",
        type=Path,
        default=None,
        help="Workflow definition file (overrides AGENT_TASK_WORKFLOW_PATH)",
    )
    parser.add_argument(
        "--state",
        type=Path,
        default=None,
        help="State file (overrides AGENT_TASK_STATE_PATH)",
    )
    parser.add_argument(
        "--agents",
        default=None,
        help="Agent registry factory in the form 'package.module:factory'",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("validate", help="Load the workflow definition and report on it")

    create_plan = subparsers.add_parser("create-plan", help="Create a root plan")
    create_plan.add_argument("--plan", required=True, help="Plan id")
    create_plan.add_argument("--title", default="", help="Plan title")
    create_plan.add_argument("--agent", default=None, help="Agent handling this plan's tasks")

    insert_subplan = subparsers.add_parser(
        "insert-subplan", help="Insert or move a sub-plan under a parent plan"
    )
    insert_subplan.add_argument("--plan", required=True, help="Sub-plan id")
    insert_subplan.add_argument("--parent", required=True, help="Parent plan id")
    insert_subplan.add_argument(
        "--position", type=int, default=None, help="Index in the parent's order (default: last)"
    )
    insert_subplan.add_argument("--title", default="", help="Sub-plan title")
    insert_subplan.add_argument("--agent", default=None, help="Agent handling this sub-plan")

    spawn = subparsers.add_parser("spawn", help="Create a task under a plan")
    spawn.add_argument("--plan", required=True, help="Owning plan id")
    spawn.add_argument("--input", required=True, help="Task input (JSON or plain text)")
    spawn.add_argument("--wid", default=None, help="Start node (default: workflow entry)")
    spawn.add_argument("--workid", default=None, help="Correlation tag for the logical run")

    run = subparsers.add_parser("run", help="Drive a plan until it needs a decision")
    run.add_argument("--plan", required=True, help="Plan id")
    run.add_argument("--max-tasks", type=int, default=None, help="Stop after N tasks")

    subparsers.add_parser("recover", help="Re-drive tasks left running by a crash")

    tasks = subparsers.add_parser("tasks", help="List task records")
    tasks.add_argument("--plan", default=None, help="Only tasks of this plan")
    tasks.add_argument(
        "--state",
        dest="task_state",
        choices=[s.value for s in TaskState],
        default=None,
        help="Only tasks in this state",
    )

    show = subparsers.add_parser("show", help="Show a task record and its history")
    show.add_argument("--task", type=int, required=True, help="Task id")

    suspend = subparsers.add_parser("suspend", help="Park a running task")
    suspend.add_argument("--task", type=int, required=True, help="Task id")
    suspend.add_argument("--reason", required=True, help="Why the task is parked")

    resume = subparsers.add_parser("resume", help="Re-admit a pending task")
    resume.add_argument("--task", type=int, required=True, help="Task id")
    resume.add_argument(
        "--decision",
        choices=[d.value for d in ResumeDecision],
        required=True,
        help="next: advance past the suspension point; retry: re-run the current node",
    )
    resume.add_argument("--plan", default=None, help="Reassign the task to this plan")

    cancel = subparsers.add_parser("cancel", help="Cancel a running task")
    cancel.add_argument("--task", type=int, required=True, help="Task id")
    cancel.add_argument("--reason", default=None, help="Why the task is cancelled")

    plan = subparsers.add_parser("plan", help="Show a plan tree")
    plan.add_argument("--plan", required=True, help="Plan id")

    tool_log = subparsers.add_parser("tool-log", help="Show the tool log of a run")
    tool_log.add_argument("--workid", required=True, help="Run correlation tag")

    reverse = subparsers.add_parser("reverse", help="Reverse tool calls down to an ordinal")
    reverse.add_argument("--workid", required=True, help="Run correlation tag")
    reverse.add_argument("--upto", type=int, required=True, help="Lowest ordinal to reverse")

    return parser


def _settings(args: argparse.Namespace) -> EngineSettings:
    overrides: dict[str, Any] = {}
    if args.workflow is not None:
        overrides["workflow_path"] = args.workflow
    if args.state is not None:
        overrides["state_path"] = args.state
    settings = EngineSettings()
    return settings.model_copy(update=overrides) if overrides else settings


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = _settings(args)
    except ValidationError as e:
        print(f"Configuration error:\n{e}", file=sys.stderr)
        return 2

    configure_logging(settings.log_level, json_output=settings.log_json)

    try:
        if args.command == "validate":
            if settings.workflow_path is None:
                print("No workflow configured (use --workflow)", file=sys.stderr)
                return 2
            graph = load_workflow(
                settings.workflow_path,
                default_loop_max_iterations=settings.default_loop_max_iterations,
            )
            _emit(
                {
                    "workflow_id": graph.workflow_id,
                    "name": graph.name,
                    "entry": graph.entry,
                    "nodes": sorted(graph.nodes),
                }
            )
            return 0

        orchestrator = Orchestrator(
            settings, agents=_load_agents(args.agents), configure_logging=False
        )

        if args.command == "create-plan":
            _emit(orchestrator.plans.create_plan(args.plan, title=args.title, agent=args.agent))
            return 0

        if args.command == "insert-subplan":
            _emit(
                orchestrator.plans.insert_subplan(
                    args.plan, args.parent, args.position, title=args.title, agent=args.agent
                )
            )
            return 0

        if args.command == "spawn":
            _emit(
                orchestrator.plans.spawn_task(
                    args.plan, _parse_input(args.input), wid=args.wid, workid=args.workid
                )
            )
            return 0

        if args.command == "run":
            result = orchestrator.run_plan(args.plan, max_tasks=args.max_tasks)
            _emit(result.to_json())
            return 0 if result.failure is None else 3

        if args.command == "recover":
            _emit(orchestrator.recover())
            return 0

        if args.command == "tasks":
            state = TaskState(args.task_state) if args.task_state else None
            _emit(orchestrator.tasks.list(planid=args.plan, state=state))
            return 0

        if args.command == "show":
            record = orchestrator.tasks.get(args.task)
            history = orchestrator.tasks.history(args.task)
            _emit(
                {
                    "task": record.model_dump(mode="json"),
                    "history": [e.model_dump(mode="json") for e in history],
                }
            )
            return 0

        if args.command == "suspend":
            ack = orchestrator.canvas.suspend(args.task, args.reason)
            _emit({"task_id": ack.task_id, "wid": ack.wid, "reason": ack.reason})
            return 0

        if args.command == "resume":
            _emit(orchestrator.canvas.resume(args.task, args.decision, planid=args.plan))
            return 0

        if args.command == "cancel":
            _emit(orchestrator.engine.cancel(args.task, args.reason))
            return 0

        if args.command == "plan":
            _emit(orchestrator.plans.tree(args.plan))
            return 0

        if args.command == "tool-log":
            _emit(orchestrator.tool_log.history(args.workid))
            return 0

        if args.command == "reverse":
            report = orchestrator.plans.reverse(args.workid, args.upto)
            _emit(report.to_json())
            return 0 if report.complete else 3

        logger.error("Unknown command", extra={"command": args.command})
        return 2

    except EngineError as e:
        logger.warning(e.message, extra={"error": e.to_payload()})
        print(json.dumps(e.to_payload(), default=str), file=sys.stderr)
        return 3

    except Exception:
        logger.exception("Command failed")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
