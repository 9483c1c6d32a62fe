"""
Wiring for the content workflow services used by the API process.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.orm import sessionmaker

from app.config import Settings
from app.core.clock import Clock, now_utc
from app.services.content_store import CalendarContentStore, ContentStore
from app.services.event_bus import ContentPublished, EventBus, EventTopic
from app.services.notification_service import NotificationService, NotificationSink
from app.services.workflow_analytics import WorkflowAnalytics
from app.services.workflow_engine import WorkflowEngine
from app.services.workflow_events import WorkflowEventBridge
from app.services.workflow_scheduler import WorkflowReminderScheduler
from app.services.workflow_stages import WorkflowConfig
from app.services.workflow_store import WorkflowStore
from app.websockets.connection_manager import ConnectionManager

logger = logging.getLogger(__name__)


@dataclass
class WorkflowServices:
    engine: WorkflowEngine
    bus: EventBus
    bridge: WorkflowEventBridge
    scheduler: WorkflowReminderScheduler
    analytics: WorkflowAnalytics

    def start(self) -> None:
        self.bridge.register()
        self.scheduler.start()

    async def stop(self) -> None:
        await self.scheduler.stop()
        await self.bus.drain()
        self.bridge.unregister()


def build_workflow_services(
    session_factory: sessionmaker,
    settings: Settings,
    *,
    connections: ConnectionManager | None = None,
    content_store: ContentStore | None = None,
    notifier: NotificationSink | None = None,
    clock: Clock = now_utc,
) -> WorkflowServices:
    config = WorkflowConfig.from_settings(settings)
    store = WorkflowStore(session_factory)
    content_store = content_store or CalendarContentStore(session_factory)
    bus = EventBus()
    engine = WorkflowEngine(
        store,
        content_store,
        notifier=notifier or NotificationService(connections),
        event_bus=bus,
        config=config,
        clock=clock,
    )

    if connections is not None:
        async def push_published(event: ContentPublished) -> None:
            await connections.broadcast("content_published", event.model_dump())

        bus.subscribe(EventTopic.CONTENT_PUBLISHED, push_published)

    logger.info("Workflow services configured: stages=%s auto_progress=%s reminders=%s",
                list(config.pipeline), config.auto_progress_enabled, config.reminder_frequency.value)
    return WorkflowServices(
        engine=engine,
        bus=bus,
        bridge=WorkflowEventBridge(engine, bus),
        scheduler=WorkflowReminderScheduler(engine),
        analytics=WorkflowAnalytics(
            store,
            config.pipeline,
            content_store,
            clock=clock,
            deadline_threshold_days=config.deadline_threshold_days,
        ),
    )
