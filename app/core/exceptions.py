"""Custom exception types for domain and API layers."""
from __future__ import annotations


class AppError(Exception):
    """Base app exception."""


class ValidationError(AppError):
    """Validation failure for user input or configuration."""


class WorkflowError(AppError):
    """Base class for content workflow failures surfaced to callers."""


class ContentNotFound(WorkflowError):
    """Referenced content item does not exist in the content store."""

    def __init__(self, content_id: str):
        super().__init__(f"Content not found: {content_id}")
        self.content_id = content_id


class DuplicateWorkflow(WorkflowError):
    """A workflow already exists for the content item."""

    def __init__(self, content_id: str):
        super().__init__(f"Workflow already exists for content: {content_id}")
        self.content_id = content_id


class WorkflowNotFound(WorkflowError):
    """No workflow with the given id."""

    def __init__(self, workflow_id: str):
        super().__init__(f"Workflow not found: {workflow_id}")
        self.workflow_id = workflow_id


class WorkflowConflict(WorkflowError):
    """Concurrent writers kept invalidating the workflow version."""

    def __init__(self, workflow_id: str):
        super().__init__(f"Workflow {workflow_id} changed concurrently, retry the update")
        self.workflow_id = workflow_id


class InvalidStage(WorkflowError):
    """Stage name is not part of the configured stage list."""

    def __init__(self, stage: str | None):
        super().__init__(f"Invalid workflow stage: {stage}")
        self.stage = stage
