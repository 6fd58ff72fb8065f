"""Immutable workflow graph and successor resolution.

A graph is built once from a definition and never mutated afterwards.
Reconfiguration means loading a new graph, not editing this one.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from enum import Enum
from typing import assert_never

from pydantic import BaseModel, ConfigDict, Field, field_validator

from agent_task_engine.errors import (
    LoopBoundExceeded,
    NotFound,
    UnmatchedBranch,
    WorkflowDefinitionError,
)

from .checks import CheckOutcome, CheckSpec, as_text

logger = logging.getLogger(__name__)

BRANCH_DEFAULT_KEY = "default"


class NodeAction(str, Enum):
    CALL = "call"
    GOTO = "goto"
    LOOP = "loop"
    BRANCH = "branch"


class EdgeType(str, Enum):
    """What the edge leaving a node means.

    This is a closed set. Adding a value is a design decision, not configuration.
    """

    FORWARD = "forward"
    BACKTRACK = "backtrack"
    LOOP_REPEAT = "loop_repeat"


class WorkflowNode(BaseModel):
    """One step definition in the execution graph."""

    id: str
    pid: str | None = None
    code: str
    action: NodeAction = NodeAction.CALL
    desc: str = ""
    check: CheckSpec = Field(default_factory=CheckSpec)
    type: EdgeType = EdgeType.FORWARD

    next: str | None = Field(default=None, description="Explicit call/loop-exit successor")
    target: str | None = Field(default=None, description="Goto target or loop re-entry node")
    branches: dict[str, str] = Field(default_factory=dict)
    max_iterations: int | None = Field(default=None, ge=1)
    retryable: bool = False

    model_config = ConfigDict(frozen=True, extra="forbid")

    @field_validator("branches", mode="before")
    @classmethod
    def _stringify_branch_keys(cls, value: object) -> object:
        # YAML turns `true:` and `1:` into non-string keys.
        if isinstance(value, Mapping):
            return {as_text(k): v for k, v in value.items()}
        return value


class WorkflowGraph:
    """Read-only node graph with goto/loop/branch control edges.

    Safe to share across executions without synchronisation.
    """

    def __init__(
        self,
        nodes: Iterable[WorkflowNode],
        *,
        entry: str | None = None,
        workflow_id: str = "default",
        code: str = "",
        name: str = "",
        desc: str = "",
        default_loop_max_iterations: int = 5,
    ) -> None:
        self.workflow_id = workflow_id
        self.code = code
        self.name = name
        self.desc = desc
        self.default_loop_max_iterations = default_loop_max_iterations

        by_id: dict[str, WorkflowNode] = {}
        for node in nodes:
            if node.id in by_id:
                raise WorkflowDefinitionError(f"Duplicate node id: {node.id}", node_id=node.id)
            by_id[node.id] = node
        if not by_id:
            raise WorkflowDefinitionError("Workflow has no nodes", workflow_id=workflow_id)

        self._nodes: Mapping[str, WorkflowNode] = by_id
        self._children: dict[str, tuple[str, ...]] = {}
        for node in by_id.values():
            if node.pid is not None:
                self._children[node.pid] = self._children.get(node.pid, ()) + (node.id,)

        self.entry = self._resolve_entry(entry)
        self._validate()
        self._reachable = frozenset(self._walk(self.entry))

        unreachable = sorted(set(by_id) - self._reachable)
        if unreachable:
            logger.warning(
                "Workflow has unreachable nodes",
                extra={"workflow_id": workflow_id, "node_ids": unreachable},
            )

    @property
    def nodes(self) -> Mapping[str, WorkflowNode]:
        return self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def resolve(self, node_id: str) -> WorkflowNode:
        try:
            return self._nodes[node_id]
        except KeyError:
            raise NotFound(f"Workflow node not found: {node_id}", node_id=node_id) from None

    def children(self, node_id: str) -> tuple[str, ...]:
        return self._children.get(node_id, ())

    def is_reachable(self, node_id: str) -> bool:
        return node_id in self._reachable

    def loop_bound(self, node: WorkflowNode) -> int:
        return node.max_iterations or self.default_loop_max_iterations

    def next(self, node_id: str, outcome: CheckOutcome, *, iteration: int = 1) -> str | None:
        """Compute the successor of `node_id` given the check outcome.

        `iteration` is the number of times a loop node has been evaluated in the
        current pass, including this one. Returns None when the workflow is
        exhausted.
        """

        node = self.resolve(node_id)
        action = node.action
        if action is NodeAction.CALL:
            return self._forward_successor(node)
        elif action is NodeAction.GOTO:
            return node.target
        elif action is NodeAction.LOOP:
            if outcome.passed:
                return self._forward_successor(node)
            bound = self.loop_bound(node)
            if iteration >= bound:
                raise LoopBoundExceeded(
                    f"Loop node {node.id!r} did not pass its check within {bound} iterations",
                    node_id=node.id,
                    iterations=iteration,
                    max_iterations=bound,
                )
            return node.target or node.id
        elif action is NodeAction.BRANCH:
            key = outcome.discriminant
            if key is not None and key in node.branches:
                return node.branches[key]
            if BRANCH_DEFAULT_KEY in node.branches:
                return node.branches[BRANCH_DEFAULT_KEY]
            raise UnmatchedBranch(
                f"Branch node {node.id!r} has no successor for {key!r}",
                node_id=node.id,
                discriminant=key,
                declared=sorted(node.branches),
            )
        else:
            assert_never(action)

    def _forward_successor(self, node: WorkflowNode) -> str | None:
        if node.next is not None:
            return node.next
        children = self.children(node.id)
        return children[0] if children else None

    def _edges(self, node: WorkflowNode) -> list[str]:
        edges: list[str] = []
        if node.action in (NodeAction.CALL, NodeAction.LOOP):
            successor = self._forward_successor(node)
            if successor is not None:
                edges.append(successor)
        if node.action is NodeAction.LOOP:
            edges.append(node.target or node.id)
        if node.action is NodeAction.GOTO and node.target is not None:
            edges.append(node.target)
        if node.action is NodeAction.BRANCH:
            edges.extend(node.branches.values())
        return edges

    def _walk(self, start: str) -> set[str]:
        seen: set[str] = set()
        stack = [start]
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            stack.extend(e for e in self._edges(self._nodes[current]) if e not in seen)
        return seen

    def _resolve_entry(self, entry: str | None) -> str:
        if entry is not None:
            if entry not in self._nodes:
                raise WorkflowDefinitionError(f"Entry node not found: {entry}", node_id=entry)
            return entry
        roots = [n.id for n in self._nodes.values() if n.pid is None]
        if len(roots) != 1:
            raise WorkflowDefinitionError(
                "Workflow needs an explicit entry or exactly one root node",
                roots=roots,
            )
        return roots[0]

    def _validate(self) -> None:
        for node in self._nodes.values():
            refs: list[tuple[str, str | None]] = [
                ("pid", node.pid),
                ("next", node.next),
                ("target", node.target),
            ]
            refs.extend((f"branches[{k}]", v) for k, v in node.branches.items())
            for label, ref in refs:
                if ref is not None and ref not in self._nodes:
                    raise WorkflowDefinitionError(
                        f"Node {node.id!r} references unknown node in {label}: {ref!r}",
                        node_id=node.id,
                    )

            if node.action is NodeAction.GOTO and node.target is None:
                raise WorkflowDefinitionError(
                    f"Goto node {node.id!r} needs a target", node_id=node.id
                )
            if node.action is NodeAction.BRANCH and not node.branches:
                raise WorkflowDefinitionError(
                    f"Branch node {node.id!r} declares no branches", node_id=node.id
                )
            if (
                node.action in (NodeAction.CALL, NodeAction.LOOP)
                and node.next is None
                and len(self.children(node.id)) > 1
            ):
                raise WorkflowDefinitionError(
                    f"Node {node.id!r} has several children; declare `next` explicitly",
                    node_id=node.id,
                    children=list(self.children(node.id)),
                )

        # Parent links must form a forest.
        for node in self._nodes.values():
            seen = {node.id}
            pid = node.pid
            while pid is not None:
                if pid in seen:
                    raise WorkflowDefinitionError(
                        f"Parent cycle through node {node.id!r}", node_id=node.id
                    )
                seen.add(pid)
                pid = self._nodes[pid].pid
