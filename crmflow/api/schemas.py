"""Request/response bodies for the HTTP surface."""

from typing import Any, Optional

from pydantic import BaseModel, Field

from crmflow.types import WorkflowRun, WorkflowRunLog


class HealthResponse(BaseModel):
    status: str
    version: str
    services: dict[str, bool]


class TriggerWorkflowRequest(BaseModel):
    context: dict[str, Any] = Field(default_factory=dict)


class RunStatusResponse(BaseModel):
    run: WorkflowRun
    logs: list[WorkflowRunLog] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    error: str
    details: Optional[dict[str, Any]] = None
