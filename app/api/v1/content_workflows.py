"""
Content Workflows API
Create workflows for content items and move them through editorial stages
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from app.api.dependencies import get_workflow_services, workflow_http_error
from app.core.exceptions import WorkflowError
from app.schemas.workflow import TransitionRecord, WorkflowPriority, WorkflowSchema
from app.services.workflow_runtime import WorkflowServices

router = APIRouter()


class WorkflowCreate(BaseModel):
    content_id: str
    initial_stage: Optional[str] = None
    assignees: List[str] = Field(default_factory=list)
    deadline: Optional[datetime] = None
    priority: WorkflowPriority = WorkflowPriority.NORMAL
    metadata: Dict[str, Any] = Field(default_factory=dict)
    user: Optional[str] = None
    notes: Optional[str] = None


class StageUpdate(BaseModel):
    stage: str
    user: Optional[str] = None
    notes: Optional[str] = None


class AssigneesUpdate(BaseModel):
    assignees: List[str]
    user: Optional[str] = None
    notes: Optional[str] = None


class DeadlineUpdate(BaseModel):
    deadline: Optional[datetime] = None
    user: Optional[str] = None
    notes: Optional[str] = None


@router.post("/", status_code=201, response_model=WorkflowSchema)
async def create_workflow(
    payload: WorkflowCreate,
    services: WorkflowServices = Depends(get_workflow_services),
):
    """Start a workflow for a content item"""
    try:
        return await services.engine.create_workflow(
            payload.content_id,
            initial_stage=payload.initial_stage,
            assignees=payload.assignees,
            deadline=payload.deadline,
            priority=payload.priority,
            metadata=payload.metadata,
            user=payload.user,
            notes=payload.notes,
        )
    except WorkflowError as exc:
        raise workflow_http_error(exc)


@router.get("/report")
async def workflow_report(
    deadline_threshold: Optional[int] = Query(default=None, ge=0),
    services: WorkflowServices = Depends(get_workflow_services),
) -> Dict[str, Any]:
    """Stage counts, deadlines, dwell times and publishing efficiency"""
    return await services.analytics.generate_workflow_report(deadline_threshold)


@router.get("/approaching", response_model=List[WorkflowSchema])
async def approaching_deadlines(
    days: Optional[int] = Query(default=None, ge=0),
    services: WorkflowServices = Depends(get_workflow_services),
):
    return await services.engine.get_approaching_deadlines(days)


@router.get("/overdue", response_model=List[WorkflowSchema])
async def overdue_content(services: WorkflowServices = Depends(get_workflow_services)):
    return await services.engine.get_overdue_content()


@router.get("/stage/{stage}", response_model=List[WorkflowSchema])
async def workflows_by_stage(
    stage: str,
    content_type: Optional[str] = None,
    assignee: Optional[str] = None,
    sort_by: Optional[str] = None,
    sort_order: Optional[str] = Query(default=None, pattern="^(asc|desc)$"),
    limit: int = Query(default=100, ge=1, le=1000),
    services: WorkflowServices = Depends(get_workflow_services),
):
    try:
        return await services.engine.get_workflows_by_stage(
            stage,
            content_type=content_type,
            assignee=assignee,
            sort_by=sort_by,
            sort_order=sort_order,
            limit=limit,
        )
    except WorkflowError as exc:
        raise workflow_http_error(exc)


@router.get("/content/{content_id}", response_model=WorkflowSchema)
async def workflow_for_content(
    content_id: str,
    services: WorkflowServices = Depends(get_workflow_services),
):
    workflow = await services.engine.get_workflow_for_content(content_id)
    if not workflow:
        raise HTTPException(status_code=404, detail="Workflow not found")
    return workflow


@router.get("/{workflow_id}", response_model=WorkflowSchema)
async def workflow_detail(
    workflow_id: str,
    services: WorkflowServices = Depends(get_workflow_services),
):
    workflow = await services.engine.get_workflow(workflow_id)
    if not workflow:
        raise HTTPException(status_code=404, detail="Workflow not found")
    return workflow


@router.get("/{workflow_id}/history", response_model=List[TransitionRecord])
async def workflow_history(
    workflow_id: str,
    limit: int = Query(default=100, ge=1, le=1000),
    services: WorkflowServices = Depends(get_workflow_services),
):
    """Transition log, newest first"""
    return await services.engine.get_workflow_history(workflow_id, limit=limit)


@router.put("/{workflow_id}/stage", response_model=WorkflowSchema)
async def update_stage(
    workflow_id: str,
    payload: StageUpdate,
    services: WorkflowServices = Depends(get_workflow_services),
):
    try:
        return await services.engine.update_stage(
            workflow_id, payload.stage, user=payload.user, notes=payload.notes
        )
    except WorkflowError as exc:
        raise workflow_http_error(exc)


@router.put("/{workflow_id}/assignees", response_model=WorkflowSchema)
async def update_assignees(
    workflow_id: str,
    payload: AssigneesUpdate,
    services: WorkflowServices = Depends(get_workflow_services),
):
    try:
        return await services.engine.update_assignees(
            workflow_id, payload.assignees, user=payload.user, notes=payload.notes
        )
    except WorkflowError as exc:
        raise workflow_http_error(exc)


@router.put("/{workflow_id}/deadline", response_model=WorkflowSchema)
async def update_deadline(
    workflow_id: str,
    payload: DeadlineUpdate,
    services: WorkflowServices = Depends(get_workflow_services),
):
    try:
        return await services.engine.update_deadline(
            workflow_id, payload.deadline, user=payload.user, notes=payload.notes
        )
    except WorkflowError as exc:
        raise workflow_http_error(exc)
