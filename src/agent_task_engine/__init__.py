"""Agent Task Engine.

A human-in-the-loop workflow engine that drives AI agent invocations through a
graph of workflow nodes, persists execution state at every step, and lets any
in-flight task be suspended and later resumed with an explicit decision.
"""

__version__ = "0.1.0"

from agent_task_engine.config import EngineSettings
from agent_task_engine.orchestrator import Orchestrator

__all__ = ["__version__", "EngineSettings", "Orchestrator"]
