"""Execution engine, agent binding and the suspend/resume boundary."""

from agent_task_engine.engine.agents import (
    Agent,
    AgentRegistry,
    AgentResult,
    FunctionAgent,
    InvocationContext,
    LLMAgent,
)
from agent_task_engine.engine.executor import ExecutionEngine, StepResult
from agent_task_engine.engine.suspend import SuspendAck, SuspendResumeController

__all__ = [
    "Agent",
    "AgentRegistry",
    "AgentResult",
    "ExecutionEngine",
    "FunctionAgent",
    "InvocationContext",
    "LLMAgent",
    "StepResult",
    "SuspendAck",
    "SuspendResumeController",
]
