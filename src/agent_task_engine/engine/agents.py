"""Agent capability and its binding to workflow nodes.

Agents are passive: they produce output for a node and never decide workflow
transitions. Whatever backs them (local code, a remote model, a tool protocol)
is invisible to the engine.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from agent_task_engine.errors import NotFound
from agent_task_engine.llm.provider import LLMProvider
from agent_task_engine.state.tool_log import Compensator
from agent_task_engine.workflow.graph import WorkflowNode

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class InvocationContext:
    """Everything an agent may know about the execution it serves.

    Keep this explicit. Avoid implicit global context.
    """

    task_id: int
    workid: str
    planid: str | None
    attempt: int
    previous_output: object = None


@dataclass(frozen=True, slots=True)
class AgentResult:
    """Outcome of one invocation.

    `suspend` asks the engine to park the task for a human decision once the
    output has been recorded. `output` must survive a JSON round trip
    unchanged (no tuples, sets, datetimes or non-string keys); the engine
    treats anything else as a failed invocation.
    """

    output: object = None
    error: str | None = None
    suspend: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def is_json_value(value: object) -> bool:
    """True if `value` reads back from JSON exactly as it was written."""
    try:
        return json.loads(json.dumps(value, allow_nan=False)) == value
    except (TypeError, ValueError):
        return False


class Agent(Protocol):
    def invoke(
        self, node: WorkflowNode, input: object, context: InvocationContext
    ) -> AgentResult: ...


AgentFunction = Callable[[WorkflowNode, object, InvocationContext], object]


@dataclass(frozen=True, slots=True)
class FunctionAgent:
    """Adapt a plain callable. Non-AgentResult return values become the output."""

    fn: AgentFunction

    def invoke(
        self, node: WorkflowNode, input: object, context: InvocationContext
    ) -> AgentResult:
        result = self.fn(node, input, context)
        if isinstance(result, AgentResult):
            return result
        return AgentResult(output=result)


class LLMAgent:
    """Run a node by prompting an LLM with the node description and task input."""

    def __init__(
        self,
        provider: LLMProvider,
        *,
        system_prompt: str = "You are one step of a supervised workflow. Answer the step only.",
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> None:
        self.provider = provider
        self.system_prompt = system_prompt
        self.max_tokens = max_tokens
        self.temperature = temperature

    def invoke(
        self, node: WorkflowNode, input: object, context: InvocationContext
    ) -> AgentResult:
        user = [f"Step: {node.code}", node.desc, f"Input:\n{_render(input)}"]
        if context.previous_output is not None:
            user.append(f"Previous step output:\n{_render(context.previous_output)}")
        messages = [
            {"role": "system", "content": self.system_prompt},
            {"role": "user", "content": "\n\n".join(part for part in user if part)},
        ]
        text = self.provider.chat(
            messages, max_tokens=self.max_tokens, temperature=self.temperature
        )
        return AgentResult(output=text)


def _render(value: object) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, indent=2, default=str)


class AgentRegistry:
    """Which agent runs which node.

    Resolution order: node id binding, node code binding, the plan's agent,
    then the default agent.
    """

    def __init__(self, *, default: str | None = None) -> None:
        self.default = default
        self._agents: dict[str, Agent] = {}
        self._compensators: dict[str, Compensator] = {}
        self._bindings: dict[str, str] = {}

    def register(
        self, name: str, agent: Agent, *, compensator: Compensator | None = None
    ) -> AgentRegistry:
        self._agents[name] = agent
        undo = compensator or getattr(agent, "compensate", None)
        if undo is not None:
            self._compensators[name] = undo
        logger.debug("Agent registered", extra={"agent": name, "reversible": undo is not None})
        return self

    def bind(self, node_ref: str, name: str) -> AgentRegistry:
        self._bindings[node_ref] = name
        return self

    def names(self) -> list[str]:
        return sorted(self._agents)

    def resolve(self, node: WorkflowNode, plan_agent: str | None = None) -> tuple[str, Agent]:
        for candidate in (
            self._bindings.get(node.id),
            self._bindings.get(node.code),
            plan_agent,
            self.default,
        ):
            if candidate is not None and candidate in self._agents:
                return candidate, self._agents[candidate]
        raise NotFound(f"No agent bound to node {node.id!r}", node_id=node.id)

    def compensator(self, name: str) -> Compensator | None:
        return self._compensators.get(name)
