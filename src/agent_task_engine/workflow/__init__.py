"""Workflow definitions.

The graph is read-only once loaded and can be shared by every execution.
"""

from agent_task_engine.workflow.checks import CheckKind, CheckOutcome, CheckSpec
from agent_task_engine.workflow.graph import EdgeType, NodeAction, WorkflowGraph, WorkflowNode
from agent_task_engine.workflow.loader import WorkflowDefinition, build_graph, load_workflow

__all__ = [
    "CheckKind",
    "CheckOutcome",
    "CheckSpec",
    "EdgeType",
    "NodeAction",
    "WorkflowDefinition",
    "WorkflowGraph",
    "WorkflowNode",
    "build_graph",
    "load_workflow",
]
