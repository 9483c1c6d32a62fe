from __future__ import annotations

from pydantic import BaseModel


class ContentSchema(BaseModel):
    """Snapshot of a content item as seen by the workflow engine."""

    id: str
    title: str
    type: str | None = None
    status: str | None = None
    platform: str | None = None
