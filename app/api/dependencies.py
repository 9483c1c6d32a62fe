"""Shared API dependencies."""
from __future__ import annotations

from fastapi import HTTPException, Request

from app.core.exceptions import (
    ContentNotFound,
    DuplicateWorkflow,
    InvalidStage,
    WorkflowConflict,
    WorkflowError,
    WorkflowNotFound,
)
from app.services.workflow_runtime import WorkflowServices

ERROR_STATUS = {
    ContentNotFound: 404,
    WorkflowNotFound: 404,
    DuplicateWorkflow: 409,
    WorkflowConflict: 409,
    InvalidStage: 422,
}


def get_workflow_services(request: Request) -> WorkflowServices:
    services = getattr(request.app.state, "workflow_services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Workflow services not started")
    return services


def workflow_http_error(exc: WorkflowError) -> HTTPException:
    """Map a workflow domain error to the HTTP status the API reports."""
    code = ERROR_STATUS.get(type(exc), 400)
    return HTTPException(status_code=code, detail=str(exc))
