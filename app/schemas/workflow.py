from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class WorkflowPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class TransitionKind(str, Enum):
    CREATED = "created"
    STAGE_CHANGED = "stage_changed"
    ASSIGNEES_UPDATED = "assignees_updated"
    DEADLINE_UPDATED = "deadline_updated"
    REVIEW_REJECTED = "review_rejected"


# Kinds that move a workflow into a stage; the rest only annotate the current one.
STAGE_MOVE_KINDS = (TransitionKind.CREATED, TransitionKind.STAGE_CHANGED)


class StageHistoryEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    stage: str
    timestamp: datetime
    user: str = "system"
    notes: str | None = None


class WorkflowSchema(BaseModel):
    """Read model of a content workflow. Mutations go through the workflow engine."""

    model_config = ConfigDict(frozen=True)

    workflow_id: str
    content_id: str
    content_title: str | None = None
    content_type: str | None = None
    current_stage: str
    stage_history: tuple[StageHistoryEntry, ...] = ()
    assignees: tuple[str, ...] = ()
    deadline: datetime | None = None
    priority: WorkflowPriority = WorkflowPriority.NORMAL
    metadata: dict[str, Any] = Field(default_factory=dict)
    version: int = 1
    created_at: datetime
    updated_at: datetime

    def summary(self) -> dict[str, Any]:
        return {
            "workflow_id": self.workflow_id,
            "content_id": self.content_id,
            "content_title": self.content_title,
            "current_stage": self.current_stage,
            "deadline": self.deadline.isoformat() if self.deadline else None,
            "assignees": list(self.assignees),
            "priority": self.priority.value,
        }


class TransitionRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    workflow_id: str
    content_id: str
    kind: TransitionKind = TransitionKind.STAGE_CHANGED
    from_stage: str | None = None
    to_stage: str
    user: str = "system"
    notes: str | None = None
    timestamp: datetime
