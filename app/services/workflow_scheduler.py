"""
In-process scheduler for workflow deadline reminders and stall detection.
One background task; a tick that is still running causes the next one to be skipped.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List

from app.core.clock import Clock, as_utc
from app.schemas.workflow import WorkflowSchema
from app.services.workflow_engine import SYSTEM_USER, WorkflowEngine
from app.services.workflow_stages import ReminderFrequency

logger = logging.getLogger(__name__)


class WorkflowReminderScheduler:
    """Sends deadline reminders per assignee and flags stalled workflows."""

    def __init__(
        self,
        engine: WorkflowEngine,
        *,
        frequency: ReminderFrequency | str | None = None,
        interval_seconds: float | None = None,
        stall_days: int | None = None,
        deadline_threshold_days: int | None = None,
        clock: Clock | None = None,
    ):
        config = engine.config
        self.engine = engine
        self.notifier = engine.notifier
        self.frequency = ReminderFrequency(frequency or config.reminder_frequency)
        self.interval_seconds = interval_seconds or self.frequency.interval_seconds
        self.stall_days = stall_days if stall_days is not None else config.stall_days
        self.deadline_threshold_days = (
            deadline_threshold_days if deadline_threshold_days is not None else config.deadline_threshold_days
        )
        self.clock = clock or engine.clock
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self._tick_lock = asyncio.Lock()
        self.last_tick_at: datetime | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start scheduler loop as background task. The loop opens with a stall check."""
        if self.running:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop())
        logger.info("WorkflowReminderScheduler started (%s, every %ss)",
                    self.frequency.value, self.interval_seconds)

    async def stop(self, timeout: float | None = None) -> None:
        """Stop scheduler loop and wait for the running tick to finish."""
        self._stop_event.set()
        if self._task:
            try:
                await asyncio.wait_for(asyncio.shield(self._task), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning("WorkflowReminderScheduler tick did not finish in %ss, cancelling", timeout)
                self._task.cancel()
                try:
                    await self._task
                except asyncio.CancelledError:
                    pass
            self._task = None
        logger.info("WorkflowReminderScheduler stopped")

    async def _run_loop(self) -> None:
        await self._guarded(self.check_stalled_content)
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                await self.run_tick()

    async def run_tick(self) -> bool:
        """Run one reminder pass. Returns False when a previous tick is still running."""
        return await self._guarded(self._tick)

    async def _guarded(self, job: Callable[[], Awaitable[Any]]) -> bool:
        if self._tick_lock.locked():
            logger.warning("Previous workflow scheduler tick still running, skipping")
            return False
        async with self._tick_lock:
            try:
                await job()
            except Exception as exc:
                logger.exception("WorkflowReminderScheduler tick failed: %s", exc)
        return True

    async def _tick(self) -> None:
        self.last_tick_at = as_utc(self.clock())
        await self.send_workflow_reminders()
        await self.check_stalled_content()

    async def send_workflow_reminders(self) -> Dict[str, Dict[str, List[WorkflowSchema]]]:
        logger.info("Sending workflow reminders")
        now = as_utc(self.clock())
        approaching = await self.engine.get_approaching_deadlines(self.deadline_threshold_days, now=now)
        overdue = await self.engine.get_overdue_content(now=now)

        by_assignee: Dict[str, Dict[str, List[WorkflowSchema]]] = {}
        for key, workflows in (("approaching", approaching), ("overdue", overdue)):
            for workflow in workflows:
                for assignee in workflow.assignees:
                    bucket = by_assignee.setdefault(assignee, {"approaching": [], "overdue": []})
                    bucket[key].append(workflow)

        if self.notifier is not None:
            for assignee, reminders in by_assignee.items():
                try:
                    await self.notifier.send_notification(
                        assignee,
                        "workflow_reminder",
                        {
                            "approaching_deadlines": [w.summary() for w in reminders["approaching"]],
                            "overdue_content": [w.summary() for w in reminders["overdue"]],
                        },
                    )
                except Exception as exc:
                    logger.exception("Failed to send workflow reminder to %s: %s", assignee, exc)
        return by_assignee

    async def check_stalled_content(self) -> List[WorkflowSchema]:
        logger.info("Checking for stalled content")
        stalled = await self.engine.get_stalled_workflows(self.stall_days, now=as_utc(self.clock()))
        for workflow in stalled:
            if workflow.assignees:
                await self.engine.notify_assignees(
                    workflow, "workflow_stalled", SYSTEM_USER,
                    {"last_updated": workflow.updated_at.isoformat()},
                )
        logger.info("Stalled content check complete: %s stalled", len(stalled))
        return stalled
