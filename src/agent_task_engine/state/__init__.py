"""Durable execution state: task records, plan entries and the tool log."""

from agent_task_engine.state.manager import StateManager
from agent_task_engine.state.models import (
    ExecutionState,
    PlanEntry,
    PlanState,
    ResumeDecision,
    TaskEvent,
    TaskRecord,
    TaskState,
    ToolLogEntry,
)
from agent_task_engine.state.task_store import TaskStore
from agent_task_engine.state.tool_log import ToolLog

__all__ = [
    "ExecutionState",
    "PlanEntry",
    "PlanState",
    "ResumeDecision",
    "StateManager",
    "TaskEvent",
    "TaskRecord",
    "TaskState",
    "TaskStore",
    "ToolLog",
    "ToolLogEntry",
]
