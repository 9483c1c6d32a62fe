"""
SQLAlchemy models for the content workflow service.
"""
from __future__ import annotations

import uuid

from sqlalchemy import JSON, Column, Date, DateTime, ForeignKey, Index, Integer, String, Text, Time
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


class ContentCalendar(Base):
    __tablename__ = "content_calendar"

    id = Column(String(36), primary_key=True, default=_uuid)
    title = Column(Text, nullable=False)
    content_type = Column(Text)
    platform = Column(Text)
    content_body = Column(Text)
    media_url = Column(Text)
    scheduled_date = Column(Date)
    scheduled_time = Column(Time)
    published_at = Column(DateTime(timezone=True))
    status = Column(Text, default="draft")
    target_audience = Column(Text)
    keywords = Column(JSON, default=list)
    meta = Column("metadata", JSON, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class ContentWorkflow(Base):
    __tablename__ = "content_workflows"

    workflow_id = Column(String(64), primary_key=True)
    content_id = Column(String(64), nullable=False, unique=True, index=True)
    content_title = Column(Text)
    content_type = Column(Text)
    current_stage = Column(Text, nullable=False, index=True)
    history_seq = Column(Integer, nullable=False, default=0)
    deadline = Column(DateTime(timezone=True), index=True)
    priority = Column(Text, nullable=False, default="normal")
    meta = Column("metadata", JSON, default=dict)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False, index=True)

    assignee_links = relationship(
        "WorkflowAssignee",
        order_by="WorkflowAssignee.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    history = relationship(
        "WorkflowStageEntry",
        order_by="WorkflowStageEntry.seq",
        lazy="selectin",
        viewonly=True,
    )

    __mapper_args__ = {"version_id_col": version}


class WorkflowAssignee(Base):
    __tablename__ = "workflow_assignees"

    id = Column(Integer, primary_key=True, autoincrement=True)
    workflow_id = Column(
        String(64), ForeignKey("content_workflows.workflow_id", ondelete="CASCADE"), nullable=False
    )
    user_id = Column(Text, nullable=False)
    position = Column(Integer, nullable=False, default=0)

    __table_args__ = (Index("ix_workflow_assignees_user_id", "user_id"),)


class WorkflowStageEntry(Base):
    """One row per stage_history entry; rows are only ever inserted."""

    __tablename__ = "workflow_stage_history"

    workflow_id = Column(
        String(64), ForeignKey("content_workflows.workflow_id", ondelete="CASCADE"), primary_key=True
    )
    seq = Column(Integer, primary_key=True)
    stage = Column(Text, nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    user = Column(Text, nullable=False, default="system")
    notes = Column(Text)


class WorkflowTransition(Base):
    __tablename__ = "workflow_transitions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    workflow_id = Column(String(64), nullable=False, index=True)
    content_id = Column(String(64), nullable=False)
    kind = Column(Text, nullable=False, default="stage_changed")
    from_stage = Column(Text)
    to_stage = Column(Text, nullable=False)
    user = Column(Text, nullable=False, default="system")
    notes = Column(Text)
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)
