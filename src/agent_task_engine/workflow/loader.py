"""Load workflow definitions from declarative sources.

Definitions are YAML or JSON documents of the form::

    workflow:
      id: ddd-design
      code: ddd
      name: Domain design
      entry: analyse
      nodes:
        - id: analyse
          code: ddd_analysis
          action: call
          check: {kind: non_empty}

Malformed definitions fail here, before any task record exists.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError

from agent_task_engine.errors import WorkflowDefinitionError

from .graph import WorkflowGraph, WorkflowNode

logger = logging.getLogger(__name__)


class WorkflowDefinition(BaseModel):
    id: str = "default"
    code: str = ""
    name: str = ""
    desc: str = ""
    entry: str | None = None
    nodes: list[WorkflowNode] = Field(default_factory=list)


def build_graph(
    raw: Mapping[str, Any], *, default_loop_max_iterations: int = 5
) -> WorkflowGraph:
    """Validate a definition mapping and build its graph."""

    body = raw.get("workflow", raw)
    if not isinstance(body, Mapping):
        raise WorkflowDefinitionError("Workflow definition must be a mapping")

    try:
        definition = WorkflowDefinition.model_validate(dict(body))
    except ValidationError as e:
        raise WorkflowDefinitionError(
            "Invalid workflow definition", errors=e.errors(include_url=False)
        ) from e

    graph = WorkflowGraph(
        definition.nodes,
        entry=definition.entry,
        workflow_id=definition.id,
        code=definition.code,
        name=definition.name,
        desc=definition.desc,
        default_loop_max_iterations=default_loop_max_iterations,
    )
    logger.info(
        "Workflow loaded",
        extra={"workflow_id": graph.workflow_id, "nodes": len(graph), "entry": graph.entry},
    )
    return graph


def load_workflow(path: Path, *, default_loop_max_iterations: int = 5) -> WorkflowGraph:
    """Load a workflow graph from a YAML or JSON file."""

    if not path.exists():
        raise WorkflowDefinitionError(f"Workflow file not found: {path}", path=str(path))

    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix.lower() == ".json":
            raw = json.loads(text)
        else:
            raw = yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise WorkflowDefinitionError(
            f"Workflow file is not parseable: {path}", path=str(path), reason=str(e)
        ) from e

    if not isinstance(raw, Mapping):
        raise WorkflowDefinitionError(
            f"Workflow file must contain a mapping: {path}", path=str(path)
        )
    return build_graph(raw, default_loop_max_iterations=default_loop_max_iterations)
