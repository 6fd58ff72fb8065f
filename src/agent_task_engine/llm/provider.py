"""Chat-completion backend interface for model-backed agents."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from typing import Any


class LLMProvider(ABC):
    """A model the engine can prompt.

    Concrete SDK adapters (hosted APIs, local runtimes) live outside this
    package. They only need to implement :meth:`chat`; they are bound to
    workflow nodes through :class:`~agent_task_engine.engine.agents.LLMAgent`.
    """

    @abstractmethod
    def chat(
        self,
        messages: Sequence[Mapping[str, str]],
        max_tokens: int | None = None,
        temperature: float | None = None,
        **kwargs: Any,
    ) -> str:
        """Generate a reply to a conversation.

        Args:
            messages: Message dicts with 'role' and 'content'.
            max_tokens: Maximum tokens to generate.
            temperature: Sampling temperature.
            **kwargs: Additional provider-specific parameters.

        Returns:
            The assistant reply text.
        """

    def generate(
        self,
        prompt: str,
        max_tokens: int | None = None,
        temperature: float | None = None,
        **kwargs: Any,
    ) -> str:
        """Single-prompt completion, sent as one user message."""
        return self.chat(
            [{"role": "user", "content": prompt}],
            max_tokens=max_tokens,
            temperature=temperature,
            **kwargs,
        )
