"""Pydantic models for the REST server."""

from __future__ import annotations

from pydantic import BaseModel, Field

from agent_task_engine.state.models import ResumeDecision


class SuspendRequest(BaseModel):
    reason: str = Field(min_length=1)


class SuspendResponse(BaseModel):
    task_id: int
    wid: str
    reason: str


class ResumeRequest(BaseModel):
    decision: ResumeDecision
    planid: str | None = None


class CancelRequest(BaseModel):
    reason: str | None = None


class SubplanRequest(BaseModel):
    planid: str
    position: int | None = Field(default=None, ge=0)
    title: str = ""
    agent: str | None = None


class ReverseRequest(BaseModel):
    upto_ordinal: int = Field(ge=1)


class ReversalResponse(BaseModel):
    workid: str
    upto_ordinal: int
    reversed: list[int]
    failed_ordinal: int | None = None
    error: dict[str, object] | None = None
    complete: bool
