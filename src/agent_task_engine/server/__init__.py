"""FastAPI server adapter for agent-task-engine.

This module exposes a REST API over the orchestrator.

Design intent:
- Keep execution semantics in `agent_task_engine.engine` and `agent_task_engine.plan`
- Keep server-specific concerns (routing, CORS, error mapping) here
"""

from __future__ import annotations

__all__ = ["create_app"]

from agent_task_engine.server.app import create_app
