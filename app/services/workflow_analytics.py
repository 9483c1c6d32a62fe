from __future__ import annotations

import logging
import math
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, TypeVar

from app.core.clock import Clock, as_utc, now_utc
from app.schemas.workflow import TransitionRecord, WorkflowSchema
from app.services.content_store import ContentStore
from app.services.transition_log import TransitionLog
from app.services.workflow_stages import StagePipeline
from app.services.workflow_store import WorkflowStore

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400
EFFICIENCY_WINDOW_DAYS = 30

T = TypeVar("T")


def collect_dwell_samples(transitions: Iterable[TransitionRecord]) -> dict[str, list[float]]:
    """
    Hours spent in each stage. For each workflow, consecutive stage moves
    ordered by timestamp give one sample for the earlier move's `to_stage`.
    """
    by_workflow: dict[str, list[TransitionRecord]] = defaultdict(list)
    for transition in transitions:
        by_workflow[transition.workflow_id].append(transition)

    samples: dict[str, list[float]] = defaultdict(list)
    for moves in by_workflow.values():
        moves.sort(key=lambda t: t.timestamp)
        for current, following in zip(moves, moves[1:]):
            elapsed = (following.timestamp - current.timestamp).total_seconds()
            samples[current.to_stage].append(elapsed / 3600)
    return dict(samples)


def stage_time_stats(samples: dict[str, list[float]], stages: Iterable[str]) -> dict[str, dict[str, Any]]:
    stats: dict[str, dict[str, Any]] = {}
    for stage in stages:
        times = sorted(samples.get(stage, []))
        if not times:
            stats[stage] = {"avg_time_in_stage": 0, "median_time_in_stage": 0, "count": 0}
            continue
        stats[stage] = {
            "avg_time_in_stage": round(sum(times) / len(times), 1),
            "median_time_in_stage": round(times[len(times) // 2], 1),
            "count": len(times),
        }
    return stats


def days_between(later: datetime, earlier: datetime) -> int:
    return math.ceil((later - earlier).total_seconds() / SECONDS_PER_DAY)


class WorkflowAnalytics:
    """Read-only reporting over workflows and the transition log."""

    def __init__(
        self,
        store: WorkflowStore,
        pipeline: StagePipeline,
        content_store: ContentStore,
        transition_log: TransitionLog | None = None,
        clock: Clock = now_utc,
        deadline_threshold_days: int = 3,
    ):
        self.store = store
        self.pipeline = pipeline
        self.content_store = content_store
        self.transition_log = transition_log or store.transition_log
        self.clock = clock
        self.deadline_threshold_days = deadline_threshold_days

    def _section(self, name: str, compute: Callable[[], T], fallback: T) -> T:
        try:
            return compute()
        except Exception as exc:
            logger.exception("Workflow report section %s failed: %s", name, exc)
            return fallback

    async def generate_workflow_report(self, deadline_threshold: int | None = None) -> dict[str, Any]:
        logger.info("Generating workflow report")
        now = as_utc(self.clock())
        threshold = self.deadline_threshold_days if deadline_threshold is None else deadline_threshold
        terminal = self.pipeline.terminal

        counts = self._section("stage_counts", self.store.count_by_stage, {})
        stage_counts = {stage: counts.get(stage, 0) for stage in self.pipeline}

        overdue: list[WorkflowSchema] = self._section(
            "overdue_content", lambda: self.store.find_overdue(now, terminal), []
        )
        approaching: list[WorkflowSchema] = self._section(
            "approaching_deadlines",
            lambda: self.store.find_deadline_between(now, now + timedelta(days=threshold), terminal),
            [],
        )
        time_stats = self._section(
            "stage_time_stats",
            lambda: stage_time_stats(collect_dwell_samples(self.transition_log.stage_moves()), self.pipeline),
            stage_time_stats({}, self.pipeline),
        )
        efficiency = self._section(
            "efficiency",
            lambda: self.efficiency(stage_counts, now),
            {
                "content_published_30d": 0,
                "total_in_workflow": sum(stage_counts.values()),
                "publishing_efficiency": 0,
            },
        )

        return {
            "generated_at": now.isoformat(),
            "stage_counts": stage_counts,
            "overdue_count": len(overdue),
            "approaching_deadline_count": len(approaching),
            "stage_time_stats": time_stats,
            "bottleneck_stage": self.bottleneck_stage(stage_counts),
            "efficiency": efficiency,
            "overdue_content": [
                {**w.summary(), "days_overdue": days_between(now, w.deadline)} for w in overdue
            ],
            "approaching_deadlines": [
                {**w.summary(), "days_remaining": days_between(w.deadline, now)} for w in approaching
            ],
        }

    def bottleneck_stage(self, stage_counts: dict[str, int]) -> str | None:
        """Stage holding the most workflows; ties go to the earliest configured stage."""
        if not stage_counts:
            return None
        best = None
        for stage in self.pipeline:
            if best is None or stage_counts.get(stage, 0) > stage_counts.get(best, 0):
                best = stage
        return best

    def efficiency(self, stage_counts: dict[str, int], now: datetime) -> dict[str, Any]:
        since = now - timedelta(days=EFFICIENCY_WINDOW_DAYS)
        published = self.transition_log.count_arrivals(self.pipeline.terminal, since)
        total_content = self.content_store.count_content()
        rate = (published / total_content) * 100 if published and total_content else 0
        return {
            "content_published_30d": published,
            "total_in_workflow": sum(stage_counts.values()),
            "publishing_efficiency": round(rate, 2),
        }
