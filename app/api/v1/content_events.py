"""
Content Events API
Entry point for content lifecycle events that drive workflow transitions
"""
from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends

from app.api.dependencies import get_workflow_services
from app.services.event_bus import ContentReviewed, ContentUpdated, EventTopic
from app.services.workflow_runtime import WorkflowServices

router = APIRouter()


@router.post("/updated", status_code=202)
async def content_updated(
    event: ContentUpdated,
    services: WorkflowServices = Depends(get_workflow_services),
) -> Dict[str, Any]:
    handlers = await services.bus.publish(EventTopic.CONTENT_UPDATED, event)
    return {"accepted": True, "topic": EventTopic.CONTENT_UPDATED.value, "handlers": handlers}


@router.post("/reviewed", status_code=202)
async def content_reviewed(
    event: ContentReviewed,
    services: WorkflowServices = Depends(get_workflow_services),
) -> Dict[str, Any]:
    handlers = await services.bus.publish(EventTopic.CONTENT_REVIEWED, event)
    return {"accepted": True, "topic": EventTopic.CONTENT_REVIEWED.value, "handlers": handlers}
