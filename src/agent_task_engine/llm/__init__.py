"""LLM package initialization."""

from agent_task_engine.llm.provider import LLMProvider

__all__ = [
    "LLMProvider",
]
