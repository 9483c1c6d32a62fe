"""
Persistence for content workflows.

Every mutation is one transaction: the workflow row, its next stage-history
row and the matching transition-log row are committed together or not at all.
Lost updates are caught by the row's version column and retried.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Query, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from app.core.clock import as_utc
from app.core.exceptions import DuplicateWorkflow, WorkflowConflict, WorkflowNotFound
from app.models import ContentWorkflow, WorkflowAssignee, WorkflowStageEntry
from app.schemas.workflow import (
    StageHistoryEntry,
    TransitionKind,
    TransitionRecord,
    WorkflowPriority,
    WorkflowSchema,
)
from app.services.transition_log import TransitionLog

logger = logging.getLogger(__name__)

_UNSET: Any = object()

SORTABLE_COLUMNS = {
    "updated_at": ContentWorkflow.updated_at,
    "created_at": ContentWorkflow.created_at,
    "deadline": ContentWorkflow.deadline,
    "content_title": ContentWorkflow.content_title,
}


@dataclass
class WorkflowChange:
    """What a mutation wants written; `stage` becomes the new current stage."""

    kind: TransitionKind
    stage: str
    user: str
    notes: str
    assignees: list[str] | None = None
    deadline: Any = field(default=_UNSET)

    @property
    def sets_deadline(self) -> bool:
        return self.deadline is not _UNSET


def to_domain(row: ContentWorkflow) -> WorkflowSchema:
    return WorkflowSchema(
        workflow_id=row.workflow_id,
        content_id=row.content_id,
        content_title=row.content_title,
        content_type=row.content_type,
        current_stage=row.current_stage,
        stage_history=tuple(
            StageHistoryEntry(
                stage=entry.stage,
                timestamp=as_utc(entry.timestamp),
                user=entry.user,
                notes=entry.notes,
            )
            for entry in row.history
        ),
        assignees=tuple(link.user_id for link in row.assignee_links),
        deadline=as_utc(row.deadline),
        priority=WorkflowPriority(row.priority),
        metadata=dict(row.meta or {}),
        version=row.version,
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


def _links(assignees: list[str]) -> list[WorkflowAssignee]:
    return [WorkflowAssignee(user_id=user_id, position=i) for i, user_id in enumerate(assignees)]


class WorkflowStore:
    def __init__(self, session_factory: sessionmaker, transition_log: TransitionLog | None = None,
                 max_attempts: int = 3):
        self._session_factory = session_factory
        self.transition_log = transition_log or TransitionLog(session_factory)
        self.max_attempts = max_attempts

    def create(
        self,
        *,
        workflow_id: str,
        content_id: str,
        content_title: str | None,
        content_type: str | None,
        stage: str,
        assignees: list[str],
        deadline: datetime | None,
        priority: WorkflowPriority,
        metadata: dict[str, Any],
        user: str,
        notes: str,
        now: datetime,
    ) -> WorkflowSchema:
        with self._session_factory() as db:
            row = ContentWorkflow(
                workflow_id=workflow_id,
                content_id=content_id,
                content_title=content_title,
                content_type=content_type,
                current_stage=stage,
                history_seq=1,
                deadline=deadline,
                priority=priority.value,
                meta=metadata,
                created_at=now,
                updated_at=now,
                assignee_links=_links(assignees),
            )
            db.add(row)
            try:
                db.flush()
                db.add(
                    WorkflowStageEntry(workflow_id=workflow_id, seq=1, stage=stage, timestamp=now,
                                       user=user, notes=notes)
                )
                self.transition_log.append(
                    db,
                    TransitionRecord(
                        workflow_id=workflow_id,
                        content_id=content_id,
                        kind=TransitionKind.CREATED,
                        from_stage=None,
                        to_stage=stage,
                        user=user,
                        notes=notes,
                        timestamp=now,
                    ),
                )
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                logger.info("Workflow insert for content %s rejected: %s", content_id, exc.orig)
                raise DuplicateWorkflow(content_id) from exc
            db.refresh(row)
            return to_domain(row)

    def apply(
        self,
        workflow_id: str,
        decide: Callable[[WorkflowSchema], WorkflowChange | None],
        now: datetime,
    ) -> tuple[WorkflowSchema, WorkflowSchema | None]:
        """
        Load the workflow, let `decide` compute a change from its current state,
        and commit it. Returns (before, after); `after` is None when `decide`
        chose not to write anything.
        """
        for attempt in range(1, self.max_attempts + 1):
            with self._session_factory() as db:
                row = db.get(ContentWorkflow, workflow_id)
                if row is None:
                    raise WorkflowNotFound(workflow_id)
                before = to_domain(row)
                change = decide(before)
                if change is None:
                    return before, None

                last = before.stage_history[-1].timestamp if before.stage_history else now
                timestamp = max(now, last)
                seq = row.history_seq + 1

                row.current_stage = change.stage
                row.history_seq = seq
                row.updated_at = timestamp
                if change.assignees is not None:
                    row.assignee_links = _links(change.assignees)
                if change.sets_deadline:
                    row.deadline = change.deadline

                db.add(
                    WorkflowStageEntry(workflow_id=workflow_id, seq=seq, stage=change.stage,
                                       timestamp=timestamp, user=change.user, notes=change.notes)
                )
                self.transition_log.append(
                    db,
                    TransitionRecord(
                        workflow_id=workflow_id,
                        content_id=before.content_id,
                        kind=change.kind,
                        from_stage=before.current_stage,
                        to_stage=change.stage,
                        user=change.user,
                        notes=change.notes,
                        timestamp=timestamp,
                    ),
                )
                try:
                    db.commit()
                except (StaleDataError, IntegrityError) as exc:
                    # Another writer committed this version (or history seq) first.
                    db.rollback()
                    logger.warning(
                        "Workflow %s update conflict on attempt %s/%s: %s",
                        workflow_id, attempt, self.max_attempts, exc,
                    )
                    continue
                db.refresh(row)
                return before, to_domain(row)
        raise WorkflowConflict(workflow_id)

    def get(self, workflow_id: str) -> WorkflowSchema | None:
        with self._session_factory() as db:
            row = db.get(ContentWorkflow, workflow_id)
            return to_domain(row) if row else None

    def get_by_content(self, content_id: str) -> WorkflowSchema | None:
        with self._session_factory() as db:
            row = db.query(ContentWorkflow).filter(ContentWorkflow.content_id == content_id).first()
            return to_domain(row) if row else None

    def find(
        self,
        *,
        stage: str | None = None,
        content_type: str | None = None,
        assignee: str | None = None,
        sort_by: str | None = None,
        sort_order: str | None = None,
        limit: int | None = 100,
    ) -> list[WorkflowSchema]:
        with self._session_factory() as db:
            query = db.query(ContentWorkflow)
            if stage is not None:
                query = query.filter(ContentWorkflow.current_stage == stage)
            if content_type:
                query = query.filter(ContentWorkflow.content_type == content_type)
            if assignee:
                query = query.filter(
                    ContentWorkflow.assignee_links.any(WorkflowAssignee.user_id == assignee)
                )
            if sort_by is None:
                query = query.order_by(ContentWorkflow.updated_at.desc())
            else:
                # An explicit sort column is ascending unless asked otherwise.
                column = SORTABLE_COLUMNS.get(sort_by, ContentWorkflow.updated_at)
                query = query.order_by(column.desc() if sort_order == "desc" else column.asc())
            if limit:
                query = query.limit(limit)
            return [to_domain(row) for row in query.all()]

    def find_deadline_between(self, start: datetime, end: datetime,
                              exclude_stage: str) -> list[WorkflowSchema]:
        with self._session_factory() as db:
            query = db.query(ContentWorkflow).filter(
                ContentWorkflow.deadline.isnot(None),
                ContentWorkflow.deadline >= start,
                ContentWorkflow.deadline <= end,
            )
            return self._open_by_deadline(query, exclude_stage)

    def find_overdue(self, now: datetime, exclude_stage: str) -> list[WorkflowSchema]:
        with self._session_factory() as db:
            query = db.query(ContentWorkflow).filter(
                ContentWorkflow.deadline.isnot(None),
                ContentWorkflow.deadline < now,
            )
            return self._open_by_deadline(query, exclude_stage)

    def find_not_updated_since(self, cutoff: datetime, exclude_stage: str) -> list[WorkflowSchema]:
        with self._session_factory() as db:
            rows = (
                db.query(ContentWorkflow)
                .filter(
                    ContentWorkflow.updated_at < cutoff,
                    ContentWorkflow.current_stage != exclude_stage,
                )
                .order_by(ContentWorkflow.updated_at.asc())
                .all()
            )
            return [to_domain(row) for row in rows]

    def count_by_stage(self) -> dict[str, int]:
        with self._session_factory() as db:
            rows = (
                db.query(ContentWorkflow.current_stage, func.count(ContentWorkflow.workflow_id))
                .group_by(ContentWorkflow.current_stage)
                .all()
            )
            return {stage: count for stage, count in rows}

    @staticmethod
    def _open_by_deadline(query: Query, exclude_stage: str) -> list[WorkflowSchema]:
        rows = (
            query.filter(ContentWorkflow.current_stage != exclude_stage)
            .order_by(ContentWorkflow.deadline.asc())
            .all()
        )
        return [to_domain(row) for row in rows]
