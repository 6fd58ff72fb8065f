"""Configuration for the task engine.

Configuration is loaded from:
- environment variables (prefix ``AGENT_TASK_``)
- and a local `.env` file (if present)

Which agent binds to which node is not configured here; that belongs to whoever
assembles the :class:`~agent_task_engine.engine.agents.AgentRegistry`.
"""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from agent_task_engine.logging import configure_logging


class EngineSettings(BaseSettings):
    """Settings for the execution core.

    Notes:
        Pydantic-settings supports overriding the env file in tests via:
        `EngineSettings(_env_file=path_to_env)`.
    """

    log_level: str = Field(
        default="INFO",
        description="Root logging level",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug logging for the engine package",
    )
    log_json: bool = Field(
        default=True,
        description="Emit structured JSON log lines instead of plain text",
    )

    state_path: Path | None = Field(
        default=Path(".state/engine_state.json"),
        description="JSON document holding tasks, plans and the tool log",
    )
    workflow_path: Path | None = Field(
        default=None,
        description="Workflow definition (YAML or JSON) loaded at process start",
    )

    max_agent_attempts: int = Field(
        default=3,
        ge=1,
        description="Invocation attempts per node before the task is stopped",
    )
    retry_delay_seconds: float = Field(
        default=0.0,
        ge=0.0,
        description="Pause between attempts on the same node",
    )
    default_loop_max_iterations: int = Field(
        default=5,
        ge=1,
        description="Iteration bound for loop nodes that do not declare their own",
    )

    model_config = SettingsConfigDict(
        env_prefix="AGENT_TASK_",
        env_file=".env",
        extra="ignore",
    )

    def setup_logging(self) -> None:
        """Configure logging based on settings."""
        configure_logging(self.log_level, json_output=self.log_json)

        if self.debug:
            logging.getLogger("agent_task_engine").setLevel(logging.DEBUG)
