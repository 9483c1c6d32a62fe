"""
Append-only transition log for content workflows.
Rows are inserted inside the caller's transaction and never updated.
"""
from __future__ import annotations

from datetime import datetime
from typing import Iterable

from sqlalchemy import func
from sqlalchemy.orm import Session, sessionmaker

from app.core.clock import as_utc
from app.models import WorkflowTransition
from app.schemas.workflow import STAGE_MOVE_KINDS, TransitionKind, TransitionRecord


def to_record(row: WorkflowTransition) -> TransitionRecord:
    return TransitionRecord(
        workflow_id=row.workflow_id,
        content_id=row.content_id,
        kind=TransitionKind(row.kind),
        from_stage=row.from_stage,
        to_stage=row.to_stage,
        user=row.user,
        notes=row.notes,
        timestamp=as_utc(row.timestamp),
    )


class TransitionLog:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @staticmethod
    def append(db: Session, record: TransitionRecord) -> None:
        """Stage the record on an open session; committed with the caller's workflow write."""
        db.add(
            WorkflowTransition(
                workflow_id=record.workflow_id,
                content_id=record.content_id,
                kind=record.kind.value,
                from_stage=record.from_stage,
                to_stage=record.to_stage,
                user=record.user,
                notes=record.notes,
                timestamp=record.timestamp,
            )
        )

    def for_workflow(self, workflow_id: str, limit: int | None = 100) -> list[TransitionRecord]:
        """Transitions for one workflow, newest first."""
        with self._session_factory() as db:
            query = (
                db.query(WorkflowTransition)
                .filter(WorkflowTransition.workflow_id == workflow_id)
                .order_by(WorkflowTransition.timestamp.desc(), WorkflowTransition.id.desc())
            )
            if limit:
                query = query.limit(limit)
            return [to_record(row) for row in query.all()]

    def stage_moves(self, kinds: Iterable[TransitionKind] = STAGE_MOVE_KINDS) -> list[TransitionRecord]:
        """All stage-entering transitions across workflows, oldest first."""
        with self._session_factory() as db:
            rows = (
                db.query(WorkflowTransition)
                .filter(WorkflowTransition.kind.in_([kind.value for kind in kinds]))
                .order_by(WorkflowTransition.timestamp.asc(), WorkflowTransition.id.asc())
                .all()
            )
            return [to_record(row) for row in rows]

    def count_arrivals(self, stage: str, since: datetime) -> int:
        """How many times workflows entered `stage` at or after `since`."""
        with self._session_factory() as db:
            return (
                db.query(func.count(WorkflowTransition.id))
                .filter(
                    WorkflowTransition.to_stage == stage,
                    WorkflowTransition.kind.in_([kind.value for kind in STAGE_MOVE_KINDS]),
                    WorkflowTransition.timestamp >= since,
                )
                .scalar()
                or 0
            )
