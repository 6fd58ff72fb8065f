"""FastAPI app factory.

Endpoints are intentionally thin wrappers over the orchestrator. They carry the
suspend/resume and plan operations to a UI; they add no semantics of their own.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from agent_task_engine import __version__
from agent_task_engine.errors import EngineError, NotFound
from agent_task_engine.orchestrator import Orchestrator
from agent_task_engine.plan.controller import ReversalReport
from agent_task_engine.server.config import ServerSettings
from agent_task_engine.server.models import (
    CancelRequest,
    ResumeRequest,
    ReversalResponse,
    ReverseRequest,
    SubplanRequest,
    SuspendRequest,
    SuspendResponse,
)
from agent_task_engine.state.models import (
    PlanEntry,
    TaskEvent,
    TaskRecord,
    TaskState,
    ToolLogEntry,
)

logger = logging.getLogger(__name__)


def _to_reversal(report: ReversalReport) -> ReversalResponse:
    return ReversalResponse.model_validate(report.to_json())


def create_app(orchestrator: Orchestrator | None = None) -> FastAPI:
    settings = ServerSettings()
    orch = orchestrator or Orchestrator()

    app = FastAPI(
        title="Agent Task Engine",
        version=__version__,
        description="REST API over the suspend/resume and plan operations of the task engine.",
        openapi_url="/api/openapi.json",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
    )

    app.state.settings = settings
    app.state.orchestrator = orch

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.parsed_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(NotFound)
    def not_found(_request: Request, exc: NotFound) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": exc.to_payload()})

    @app.exception_handler(EngineError)
    def engine_error(_request: Request, exc: EngineError) -> JSONResponse:
        logger.warning(exc.message, extra={"error": exc.to_payload()})
        return JSONResponse(status_code=409, content={"detail": exc.to_payload()})

    @app.get("/api/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "version": __version__, "workflow": orch.graph.workflow_id}

    @app.get("/api/tasks", response_model=list[TaskRecord])
    def list_tasks(planid: str | None = None, state: TaskState | None = None) -> list[TaskRecord]:
        return orch.tasks.list(planid=planid, state=state)

    @app.get("/api/tasks/{task_id}", response_model=TaskRecord)
    def get_task(task_id: int) -> TaskRecord:
        return orch.tasks.get(task_id)

    @app.get("/api/tasks/{task_id}/history", response_model=list[TaskEvent])
    def task_history(task_id: int) -> list[TaskEvent]:
        return orch.tasks.history(task_id)

    @app.post("/api/tasks/{task_id}/suspend", response_model=SuspendResponse)
    def suspend_task(task_id: int, req: SuspendRequest) -> SuspendResponse:
        ack = orch.canvas.suspend(task_id, req.reason)
        return SuspendResponse(task_id=ack.task_id, wid=ack.wid, reason=ack.reason)

    @app.post("/api/tasks/{task_id}/resume", response_model=TaskRecord)
    def resume_task(task_id: int, req: ResumeRequest) -> TaskRecord:
        return orch.canvas.resume(task_id, req.decision, planid=req.planid)

    @app.post("/api/tasks/{task_id}/cancel", response_model=TaskRecord)
    def cancel_task(task_id: int, req: CancelRequest) -> TaskRecord:
        return orch.engine.cancel(task_id, req.reason)

    @app.get("/api/plans/{planid}")
    def plan_tree(planid: str) -> dict[str, object]:
        return orch.plans.tree(planid)

    @app.post("/api/plans/{planid}/subplans", response_model=PlanEntry)
    def insert_subplan(planid: str, req: SubplanRequest) -> PlanEntry:
        return orch.plans.insert_subplan(
            req.planid, planid, req.position, title=req.title, agent=req.agent
        )

    @app.get("/api/tool-log/{workid}", response_model=list[ToolLogEntry])
    def tool_log(workid: str) -> list[ToolLogEntry]:
        return orch.tool_log.history(workid)

    @app.post("/api/tool-log/{workid}/reverse", response_model=ReversalResponse)
    def reverse(workid: str, req: ReverseRequest) -> ReversalResponse:
        return _to_reversal(orch.plans.reverse(workid, req.upto_ordinal))

    return app
