"""
Content store collaborator used by the workflow engine.
The default implementation reads the content_calendar table.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy import func
from sqlalchemy.orm import sessionmaker

from app.models import ContentCalendar
from app.schemas.content import ContentSchema

logger = logging.getLogger(__name__)


class ContentStore(Protocol):
    def find_by_id(self, content_id: str) -> ContentSchema | None: ...

    def mark_published(self, content_id: str) -> None: ...

    def count_content(self) -> int: ...


class CalendarContentStore:
    """Content store backed by the content calendar."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def find_by_id(self, content_id: str) -> ContentSchema | None:
        with self._session_factory() as db:
            row = db.get(ContentCalendar, content_id)
            if not row:
                return None
            return ContentSchema(
                id=str(row.id),
                title=row.title,
                type=row.content_type,
                status=row.status,
                platform=row.platform,
            )

    def mark_published(self, content_id: str) -> None:
        with self._session_factory() as db:
            row = db.get(ContentCalendar, content_id)
            if not row:
                logger.warning("Cannot mark missing content %s as published", content_id)
                return
            row.status = "published"
            row.published_at = datetime.now(timezone.utc)
            db.commit()
            logger.info("Content %s marked published", content_id)

    def count_content(self) -> int:
        with self._session_factory() as db:
            return db.query(func.count(ContentCalendar.id)).scalar() or 0
