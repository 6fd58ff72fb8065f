"""Unit tests for agent adapters and node binding."""

from __future__ import annotations

from unittest.mock import Mock

import pytest

from agent_task_engine.engine import (
    AgentRegistry,
    AgentResult,
    FunctionAgent,
    InvocationContext,
    LLMAgent,
)
from agent_task_engine.engine.agents import is_json_value
from agent_task_engine.errors import NotFound
from agent_task_engine.llm import LLMProvider
from agent_task_engine.workflow import WorkflowNode
from helpers import ScriptedAgent

NODE = WorkflowNode(id="summarise", code="summary", desc="Summarise the findings.")
CONTEXT = InvocationContext(task_id=1, workid="w", planid=None, attempt=1)


def test_registry_resolution_order() -> None:
    registry = AgentRegistry(default="fallback")
    for name in ("by_id", "by_code", "planner", "fallback"):
        registry.register(name, ScriptedAgent(name))

    assert registry.resolve(NODE, "planner")[0] == "planner"
    registry.bind("summary", "by_code")
    assert registry.resolve(NODE, "planner")[0] == "by_code"
    registry.bind("summarise", "by_id")
    assert registry.resolve(NODE, "planner")[0] == "by_id"

    other = WorkflowNode(id="other", code="other")
    assert registry.resolve(other)[0] == "fallback"
    assert registry.names() == ["by_code", "by_id", "fallback", "planner"]


def test_registry_skips_unregistered_names() -> None:
    registry = AgentRegistry()
    registry.bind("summarise", "ghost")
    with pytest.raises(NotFound):
        registry.resolve(NODE, "also-missing")


def test_registry_tracks_compensators() -> None:
    undo = Mock()
    registry = AgentRegistry()
    registry.register("explicit", ScriptedAgent("x"), compensator=undo)
    registry.register("implicit", ScriptedAgent("x", compensate=undo))
    registry.register("plain", ScriptedAgent("x"))

    assert registry.compensator("explicit") is undo
    assert registry.compensator("implicit") is undo
    assert registry.compensator("plain") is None


def test_function_agent_wraps_plain_values() -> None:
    agent = FunctionAgent(lambda node, input, context: {"node": node.id, "input": input})
    assert agent.invoke(NODE, "text", CONTEXT) == AgentResult(
        output={"node": "summarise", "input": "text"}
    )

    passthrough = FunctionAgent(lambda *_: AgentResult(error="nope"))
    assert passthrough.invoke(NODE, "text", CONTEXT).ok is False


def test_llm_agent_prompts_provider_with_node_and_input() -> None:
    provider = Mock(spec=LLMProvider)
    provider.chat.return_value = "A short summary."
    agent = LLMAgent(provider, max_tokens=200, temperature=0.1)
    context = InvocationContext(
        task_id=1, workid="w", planid=None, attempt=1, previous_output={"facts": [1, 2]}
    )

    result = agent.invoke(NODE, {"doc": "report.pdf"}, context)

    assert result.output == "A short summary."
    provider.chat.assert_called_once()
    messages = provider.chat.call_args.args[0]
    assert messages[0]["role"] == "system"
    user = messages[1]["content"]
    assert "Step: summary" in user
    assert "Summarise the findings." in user
    assert '"doc": "report.pdf"' in user
    assert "Previous step output" in user
    assert provider.chat.call_args.kwargs == {"max_tokens": 200, "temperature": 0.1}


class EchoProvider(LLMProvider):
    def __init__(self) -> None:
        self.seen: list[list[dict[str, str]]] = []

    def chat(self, messages, max_tokens=None, temperature=None, **kwargs) -> str:
        self.seen.append(list(messages))
        return messages[-1]["content"].upper()


def test_provider_generate_goes_through_chat() -> None:
    provider = EchoProvider()

    assert provider.generate("hello") == "HELLO"
    assert provider.seen == [[{"role": "user", "content": "hello"}]]


def test_is_json_value_requires_lossless_round_trip() -> None:
    assert is_json_value({"a": [1, "two", None, 3.5, True]})
    assert not is_json_value((1, 2))
    assert not is_json_value({1: "x"})
    assert not is_json_value(float("nan"))
    assert not is_json_value(object())
