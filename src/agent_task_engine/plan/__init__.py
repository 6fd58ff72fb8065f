"""Plan/sub-plan tree driving task selection and tool-call rollback."""

from agent_task_engine.plan.controller import PlanController, ReversalReport

__all__ = ["PlanController", "ReversalReport"]
