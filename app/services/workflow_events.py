"""
Event bridge: turns content lifecycle events into workflow transitions.
"""
from __future__ import annotations

import logging

from app.services.event_bus import ContentReviewed, ContentUpdated, EventBus, EventTopic
from app.services.workflow_engine import SYSTEM_USER, WorkflowEngine

logger = logging.getLogger(__name__)


class WorkflowEventBridge:
    def __init__(self, engine: WorkflowEngine, bus: EventBus, auto_progress_enabled: bool | None = None):
        self.engine = engine
        self.bus = bus
        if auto_progress_enabled is None:
            auto_progress_enabled = engine.config.auto_progress_enabled
        self.auto_progress_enabled = auto_progress_enabled
        self._registered = False

    def register(self) -> None:
        if self._registered:
            return
        self.bus.subscribe(EventTopic.CONTENT_UPDATED, self.handle_content_updated)
        self.bus.subscribe(EventTopic.CONTENT_REVIEWED, self.handle_content_reviewed)
        self._registered = True

    def unregister(self) -> None:
        self.bus.unsubscribe(EventTopic.CONTENT_UPDATED, self.handle_content_updated)
        self.bus.unsubscribe(EventTopic.CONTENT_REVIEWED, self.handle_content_reviewed)
        self._registered = False

    async def handle_content_updated(self, event: ContentUpdated) -> None:
        if not self.auto_progress_enabled:
            return
        workflow = await self.engine.get_workflow_for_content(event.content_id)
        if workflow is None:
            return
        pipeline = self.engine.pipeline
        # Only the first stage progresses automatically on edits.
        if workflow.current_stage != pipeline.first:
            return
        logger.info("Auto-progressing workflow %s after content update", workflow.workflow_id)
        await self.engine.update_stage(
            workflow.workflow_id,
            pipeline.second,
            user=SYSTEM_USER,
            notes="auto-progressed after update",
            expected_stage=pipeline.first,
        )

    async def handle_content_reviewed(self, event: ContentReviewed) -> None:
        workflow = await self.engine.get_workflow_for_content(event.content_id)
        if workflow is None:
            return
        if not event.approved:
            await self.engine.record_review_rejection(
                workflow.workflow_id, reviewer=event.reviewer, comments=event.comments
            )
            return

        reviewed_stage = workflow.current_stage
        next_stage = self.engine.pipeline.next_stage(reviewed_stage)
        if next_stage is None:
            return
        # The approval applies to the stage that was reviewed; a workflow moved
        # elsewhere in the meantime is left alone.
        await self.engine.update_stage(
            workflow.workflow_id,
            next_stage,
            user=event.reviewer,
            notes=(
                f"Content approved and progressed to {next_stage}. "
                f"Review comments: {event.comments or 'None'}"
            ),
            expected_stage=reviewed_stage,
        )
