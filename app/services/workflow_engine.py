"""
Content workflow engine.

State machine over the configured stage list. The engine is the only writer of
workflows; every write is serialised per workflow id and committed by the
store as one transaction. Notifications and the publish side effect run after
the commit and never undo it.
"""
from __future__ import annotations

import asyncio
import logging
import secrets
import string
import weakref
from datetime import datetime, timedelta
from typing import Any, Iterable

from app.core.clock import Clock, as_utc, now_utc
from app.core.exceptions import ContentNotFound, DuplicateWorkflow
from app.schemas.workflow import TransitionKind, TransitionRecord, WorkflowPriority, WorkflowSchema
from app.services.content_store import ContentStore
from app.services.event_bus import ContentPublished, EventBus, EventTopic
from app.services.notification_service import NotificationSink
from app.services.workflow_stages import WorkflowConfig
from app.services.workflow_store import WorkflowChange, WorkflowStore

logger = logging.getLogger(__name__)

SYSTEM_USER = "system"
_ID_ALPHABET = string.digits + string.ascii_lowercase


def _dedupe(users: Iterable[str]) -> list[str]:
    seen: dict[str, None] = {}
    for user in users:
        if user:
            seen.setdefault(user, None)
    return list(seen)


class WorkflowEngine:
    def __init__(
        self,
        store: WorkflowStore,
        content_store: ContentStore,
        notifier: NotificationSink | None = None,
        event_bus: EventBus | None = None,
        config: WorkflowConfig | None = None,
        clock: Clock = now_utc,
    ):
        self.store = store
        self.transition_log = store.transition_log
        self.content_store = content_store
        self.notifier = notifier
        self.event_bus = event_bus
        self.config = config or WorkflowConfig()
        self.pipeline = self.config.pipeline
        self.clock = clock
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def now(self) -> datetime:
        return as_utc(self.clock())

    def _lock(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def _generate_workflow_id(self) -> str:
        suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(7))
        return f"wf_{int(self.now().timestamp() * 1000)}_{suffix}"

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create_workflow(
        self,
        content_id: str,
        *,
        initial_stage: str | None = None,
        assignees: Iterable[str] | None = None,
        deadline: datetime | None = None,
        priority: WorkflowPriority | str = WorkflowPriority.NORMAL,
        metadata: dict[str, Any] | None = None,
        user: str | None = None,
        notes: str | None = None,
    ) -> WorkflowSchema:
        logger.info("Creating new workflow for content %s", content_id)
        content = self.content_store.find_by_id(content_id)
        if content is None:
            raise ContentNotFound(content_id)

        async with self._lock(f"content:{content_id}"):
            if self.store.get_by_content(content_id) is not None:
                raise DuplicateWorkflow(content_id)
            stage = self.pipeline.validate(initial_stage or self.pipeline.first)
            user = user or SYSTEM_USER
            workflow = self.store.create(
                workflow_id=self._generate_workflow_id(),
                content_id=content_id,
                content_title=content.title,
                content_type=content.type,
                stage=stage,
                assignees=_dedupe(assignees or []),
                deadline=as_utc(deadline),
                priority=WorkflowPriority(priority),
                metadata=dict(metadata or {}),
                user=user,
                notes=notes or "Workflow created",
                now=self.now(),
            )

        logger.info("Workflow %s created for content %s at stage %s",
                    workflow.workflow_id, content_id, stage)
        if workflow.assignees:
            await self.notify_assignees(workflow, "assigned", user)
        return workflow

    async def update_stage(
        self,
        workflow_id: str,
        stage: str,
        *,
        user: str | None = None,
        notes: str | None = None,
        expected_stage: str | None = None,
    ) -> WorkflowSchema:
        """
        Move the workflow to `stage`. With `expected_stage`, the move only
        happens if the workflow is still at that stage when the write is made.
        """
        logger.info("Updating workflow %s stage to %s", workflow_id, stage)
        self.pipeline.validate(stage)
        if expected_stage is not None:
            self.pipeline.validate(expected_stage)
        user = user or SYSTEM_USER

        def decide(workflow: WorkflowSchema) -> WorkflowChange | None:
            if workflow.current_stage == stage:
                return None
            if expected_stage is not None and workflow.current_stage != expected_stage:
                logger.info("Workflow %s moved to %s before the update to %s, skipping",
                            workflow_id, workflow.current_stage, stage)
                return None
            return WorkflowChange(
                kind=TransitionKind.STAGE_CHANGED,
                stage=stage,
                user=user,
                notes=notes or f"Stage updated to {stage}",
            )

        async with self._lock(workflow_id):
            before, after = self.store.apply(workflow_id, decide, self.now())
        if after is None:
            logger.debug("Workflow %s left at %s, nothing to do", workflow_id, before.current_stage)
            return before

        if self.pipeline.is_terminal(stage):
            await self._handle_published(after)
        if after.assignees:
            await self.notify_assignees(
                after, "stage_changed", user,
                {"from_stage": before.current_stage, "to_stage": stage},
            )
        return after

    async def update_assignees(
        self,
        workflow_id: str,
        assignees: Iterable[str],
        *,
        user: str | None = None,
        notes: str | None = None,
    ) -> WorkflowSchema:
        assignees = _dedupe(assignees)
        logger.info("Updating workflow %s assignees (%s)", workflow_id, len(assignees))
        user = user or SYSTEM_USER

        def decide(workflow: WorkflowSchema) -> WorkflowChange:
            return WorkflowChange(
                kind=TransitionKind.ASSIGNEES_UPDATED,
                stage=workflow.current_stage,
                user=user,
                notes=notes or f"Assignees updated: {', '.join(assignees)}",
                assignees=assignees,
            )

        async with self._lock(workflow_id):
            before, after = self.store.apply(workflow_id, decide, self.now())

        added = [a for a in after.assignees if a not in before.assignees]
        if added:
            await self.notify_assignees(after, "assigned", user, {"new_assignees": added},
                                        recipients=added)
        return after

    async def update_deadline(
        self,
        workflow_id: str,
        deadline: datetime | None,
        *,
        user: str | None = None,
        notes: str | None = None,
    ) -> WorkflowSchema:
        deadline = as_utc(deadline)
        logger.info("Updating workflow %s deadline to %s", workflow_id, deadline)
        user = user or SYSTEM_USER
        label = deadline.isoformat() if deadline else "None"

        def decide(workflow: WorkflowSchema) -> WorkflowChange:
            return WorkflowChange(
                kind=TransitionKind.DEADLINE_UPDATED,
                stage=workflow.current_stage,
                user=user,
                notes=notes or f"Deadline updated: {label}",
                deadline=deadline,
            )

        async with self._lock(workflow_id):
            _, after = self.store.apply(workflow_id, decide, self.now())

        if deadline is not None and after.assignees:
            await self.notify_assignees(after, "deadline_updated", user, {"deadline": label})
        return after

    async def record_review_rejection(
        self,
        workflow_id: str,
        *,
        reviewer: str | None = None,
        comments: str | None = None,
    ) -> WorkflowSchema:
        """Note a failed review in the history without moving the workflow."""
        reviewer = reviewer or SYSTEM_USER

        def decide(workflow: WorkflowSchema) -> WorkflowChange:
            return WorkflowChange(
                kind=TransitionKind.REVIEW_REJECTED,
                stage=workflow.current_stage,
                user=reviewer,
                notes=f"Content review - Not approved. Comments: {comments or 'None'}",
            )

        async with self._lock(workflow_id):
            _, after = self.store.apply(workflow_id, decide, self.now())

        logger.info("Workflow %s review rejected by %s", workflow_id, reviewer)
        if after.assignees:
            await self.notify_assignees(after, "content_rejected", reviewer, {"comments": comments})
        return after

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_workflow_for_content(self, content_id: str) -> WorkflowSchema | None:
        return self.store.get_by_content(content_id)

    async def get_workflow(self, workflow_id: str) -> WorkflowSchema | None:
        return self.store.get(workflow_id)

    async def get_workflows_by_stage(
        self,
        stage: str,
        *,
        content_type: str | None = None,
        assignee: str | None = None,
        sort_by: str | None = None,
        sort_order: str | None = None,
        limit: int | None = 100,
    ) -> list[WorkflowSchema]:
        return self.store.find(
            stage=self.pipeline.validate(stage),
            content_type=content_type,
            assignee=assignee,
            sort_by=sort_by,
            sort_order=sort_order,
            limit=limit,
        )

    async def get_approaching_deadlines(self, days_threshold: int | None = None,
                                        now: datetime | None = None) -> list[WorkflowSchema]:
        if days_threshold is None:
            days_threshold = self.config.deadline_threshold_days
        now = as_utc(now) or self.now()
        return self.store.find_deadline_between(
            now, now + timedelta(days=days_threshold), exclude_stage=self.pipeline.terminal
        )

    async def get_overdue_content(self, now: datetime | None = None) -> list[WorkflowSchema]:
        return self.store.find_overdue(as_utc(now) or self.now(), exclude_stage=self.pipeline.terminal)

    async def get_stalled_workflows(self, stall_days: int | None = None,
                                    now: datetime | None = None) -> list[WorkflowSchema]:
        if stall_days is None:
            stall_days = self.config.stall_days
        cutoff = (as_utc(now) or self.now()) - timedelta(days=stall_days)
        return self.store.find_not_updated_since(cutoff, exclude_stage=self.pipeline.terminal)

    async def get_workflow_history(self, workflow_id: str, limit: int | None = 100) -> list[TransitionRecord]:
        return self.transition_log.for_workflow(workflow_id, limit=limit)

    # ------------------------------------------------------------------
    # Side effects
    # ------------------------------------------------------------------

    async def notify_assignees(
        self,
        workflow: WorkflowSchema,
        event_type: str,
        user: str,
        extra: dict[str, Any] | None = None,
        recipients: Iterable[str] | None = None,
    ) -> int:
        """Send one notification per recipient (default: all assignees). Failures are logged only."""
        if self.notifier is None:
            return 0
        payload = {
            "workflow_id": workflow.workflow_id,
            "content_id": workflow.content_id,
            "content_title": workflow.content_title,
            "stage": workflow.current_stage,
            "updated_by": user,
            **(extra or {}),
        }
        sent = 0
        for assignee in (workflow.assignees if recipients is None else recipients):
            try:
                await self.notifier.send_notification(assignee, event_type, payload)
                sent += 1
            except Exception as exc:
                logger.exception("Failed to notify %s of %s on workflow %s: %s",
                                 assignee, event_type, workflow.workflow_id, exc)
        return sent

    async def _handle_published(self, workflow: WorkflowSchema) -> None:
        try:
            self.content_store.mark_published(workflow.content_id)
        except Exception as exc:
            logger.exception("Marking content %s published failed: %s", workflow.content_id, exc)
        if self.event_bus is None:
            return
        try:
            await self.event_bus.publish(
                EventTopic.CONTENT_PUBLISHED,
                ContentPublished(content_id=workflow.content_id, workflow_id=workflow.workflow_id),
            )
        except Exception as exc:
            logger.exception("Publishing content.published for %s failed: %s", workflow.content_id, exc)
