"""
In-process event bus for content lifecycle events.
Handlers run as independent asyncio tasks; publishing never waits on them.
"""
from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Set, Type

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class EventTopic(str, Enum):
    CONTENT_UPDATED = "content.updated"
    CONTENT_REVIEWED = "content.reviewed"
    CONTENT_PUBLISHED = "content.published"


class ContentUpdated(BaseModel):
    content_id: str


class ContentReviewed(BaseModel):
    content_id: str
    approved: bool
    reviewer: str = "system"
    comments: str | None = None


class ContentPublished(BaseModel):
    content_id: str
    workflow_id: str | None = None


EVENT_PAYLOADS: Dict[EventTopic, Type[BaseModel]] = {
    EventTopic.CONTENT_UPDATED: ContentUpdated,
    EventTopic.CONTENT_REVIEWED: ContentReviewed,
    EventTopic.CONTENT_PUBLISHED: ContentPublished,
}

Handler = Callable[[Any], Awaitable[None]]


class EventBus:
    """Registration table of handlers per topic."""

    def __init__(self):
        self.subscribers: Dict[EventTopic, List[Handler]] = {topic: [] for topic in EventTopic}
        self._pending: Set[asyncio.Task] = set()

    def subscribe(self, topic: EventTopic | str, handler: Handler) -> None:
        self.subscribers[EventTopic(topic)].append(handler)

    def unsubscribe(self, topic: EventTopic | str, handler: Handler) -> None:
        handlers = self.subscribers[EventTopic(topic)]
        if handler in handlers:
            handlers.remove(handler)

    async def publish(self, topic: EventTopic | str, payload: BaseModel | dict) -> int:
        """Validate the payload for its topic and schedule every handler. Returns the handler count."""
        topic = EventTopic(topic)
        model = EVENT_PAYLOADS[topic]
        event = payload if isinstance(payload, model) else model.model_validate(payload)

        handlers = list(self.subscribers[topic])
        for handler in handlers:
            task = asyncio.create_task(self._dispatch(topic, handler, event))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        logger.debug("Published %s to %s handler(s)", topic.value, len(handlers))
        return len(handlers)

    async def _dispatch(self, topic: EventTopic, handler: Handler, event: BaseModel) -> None:
        try:
            await handler(event)
        except Exception as exc:
            logger.exception("Handler %s failed for %s: %s", getattr(handler, "__name__", handler),
                             topic.value, exc)

    async def drain(self) -> None:
        """Wait until handlers scheduled so far, and any they publish, have finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
