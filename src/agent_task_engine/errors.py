"""Error taxonomy for the execution core.

Every error knows how to render itself as a JSON-compatible payload so it can be
persisted on a stopped task and surfaced to whoever supervises the plan.
"""

from __future__ import annotations

from typing import Any


class EngineError(Exception):
    """Base class for all engine errors."""

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details: dict[str, Any] = details

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": type(self).__name__, "message": self.message}
        payload.update({k: v for k, v in self.details.items() if v is not None})
        return payload


class NotFound(EngineError):
    """A node, task, plan or log entry reference does not exist."""


class InvalidState(EngineError):
    """An operation was attempted against a record not in the required state."""


class TerminalStateViolation(InvalidState):
    """A task in a terminal state was asked to transition again."""


class WorkflowDefinitionError(EngineError):
    """A workflow definition is malformed. Raised at load time only."""


class LoopBoundExceeded(EngineError):
    """A loop node's check never passed within its iteration bound."""


class UnmatchedBranch(EngineError):
    """A branch node's discriminant matched none of its declared successors."""


class AgentInvocationFailure(EngineError):
    """An agent invocation failed. Transient; retried within a bound."""


class CheckFailed(EngineError):
    """A node's check rejected the agent output and the node may not be retried."""


class IrreversibleEntry(EngineError):
    """A tool log entry has no working compensating action."""

    def __init__(self, message: str, *, workid: str, ordinal: int, **details: Any) -> None:
        super().__init__(message, workid=workid, ordinal=ordinal, **details)
        self.workid = workid
        self.ordinal = ordinal


__all__ = [
    "AgentInvocationFailure",
    "CheckFailed",
    "EngineError",
    "InvalidState",
    "IrreversibleEntry",
    "LoopBoundExceeded",
    "NotFound",
    "TerminalStateViolation",
    "UnmatchedBranch",
    "WorkflowDefinitionError",
]
