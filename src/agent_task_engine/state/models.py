"""Persisted record types.

These are the three durable relations (task records, plan entries, tool log
entries) plus the per-task event history.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


def utc_now_iso() -> str:
    return datetime.now(tz=UTC).isoformat()


class TaskState(str, Enum):
    CREATED = "created"
    RUNNING = "running"
    PENDING = "pending"
    COMPLETED = "completed"
    STOPPED = "stopped"
    CANCELLED = "cancelled"


TERMINAL_STATES: frozenset[TaskState] = frozenset(
    {TaskState.COMPLETED, TaskState.STOPPED, TaskState.CANCELLED}
)

# Running -> Running records a step (new wid/output) without leaving execution.
ALLOWED_TRANSITIONS: dict[TaskState, set[TaskState]] = {
    TaskState.CREATED: {TaskState.RUNNING},
    TaskState.RUNNING: {
        TaskState.RUNNING,
        TaskState.PENDING,
        TaskState.COMPLETED,
        TaskState.STOPPED,
        TaskState.CANCELLED,
    },
    TaskState.PENDING: {TaskState.RUNNING},
    TaskState.COMPLETED: set(),
    TaskState.STOPPED: set(),
    TaskState.CANCELLED: set(),
}


class ResumeDecision(str, Enum):
    NEXT = "next"
    RETRY = "retry"


class TaskRecord(BaseModel):
    """One concrete execution attempt of a workflow instance."""

    id: int
    workid: str = Field(description="Correlation tag shared by records of one logical run")
    input: Any = None
    output: Any = None
    state: TaskState = TaskState.CREATED
    wid: str = Field(description="Workflow node the execution currently stands on")
    planid: str | None = None

    error: dict[str, Any] | None = None
    suspend_reason: str | None = None
    # Loop evaluations per node in the current pass.
    visits: dict[str, int] = Field(default_factory=dict)

    created_at: str = Field(default_factory=utc_now_iso)
    updated_at: str = Field(default_factory=utc_now_iso)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES


class TaskEvent(BaseModel):
    task_id: int
    kind: str
    wid: str | None = None
    timestamp: str = Field(default_factory=utc_now_iso)
    details: dict[str, Any] = Field(default_factory=dict)


class ToolLogEntry(BaseModel):
    """One recorded tool invocation.

    Entries are never deleted. Reversal flips `reversed` and, when the tool has a
    compensating action, appends a new entry whose `compensates` points back.
    """

    id: int
    workid: str
    ordinal: int
    tool: str
    planid: str | None = None
    task_id: int | None = None
    node_id: str | None = None
    request: Any = None
    response: Any = None
    reversed: bool = False
    reversed_at: str | None = None
    compensates: int | None = None
    created_at: str = Field(default_factory=utc_now_iso)


class PlanState(str, Enum):
    OPEN = "open"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class PlanEntry(BaseModel):
    """A plan or sub-plan node maintained by the supervising agent."""

    id: str
    pid: str | None = None
    title: str = ""
    state: PlanState = PlanState.OPEN
    agent: str | None = Field(default=None, description="Agent that handles this plan's tasks")

    subplans: list[str] = Field(default_factory=list)
    task_ids: list[int] = Field(default_factory=list)
    current: str | None = Field(default=None, description="Sub-plan currently on top")

    last_error: dict[str, Any] | None = None
    rollback_boundary: dict[str, Any] | None = None
    created_at: str = Field(default_factory=utc_now_iso)


class ExecutionState(BaseModel):
    """The whole persisted document."""

    version: str = Field(default="1.0.0", description="State schema version")
    created_at: str = Field(default_factory=utc_now_iso)
    updated_at: str = Field(default_factory=utc_now_iso)

    next_task_id: int = 1
    next_log_id: int = 1

    tasks: dict[int, TaskRecord] = Field(default_factory=dict)
    plans: dict[str, PlanEntry] = Field(default_factory=dict)
    tool_log: dict[str, list[ToolLogEntry]] = Field(default_factory=dict)
    events: list[TaskEvent] = Field(default_factory=list)
