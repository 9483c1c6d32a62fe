"""
Stage configuration for content workflows.
The stage list is an ordered, closed set supplied by configuration.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Iterator, Sequence

from app.core.exceptions import InvalidStage, ValidationError

DEFAULT_STAGES = ("draft", "review", "approved", "scheduled", "published")


class ReminderFrequency(str, Enum):
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"

    @property
    def interval_ms(self) -> int:
        return {
            ReminderFrequency.HOURLY: 60 * 60 * 1000,
            ReminderFrequency.DAILY: 24 * 60 * 60 * 1000,
            ReminderFrequency.WEEKLY: 7 * 24 * 60 * 60 * 1000,
        }[self]

    @property
    def interval_seconds(self) -> float:
        return self.interval_ms / 1000


class StagePipeline:
    """Ordered stage names; every stage crossing a boundary is validated here."""

    def __init__(self, stages: Iterable[str] = DEFAULT_STAGES):
        names = tuple(stages)
        if len(names) < 2:
            raise ValidationError("A workflow needs at least two stages.")
        if len(set(names)) != len(names):
            raise ValidationError(f"Duplicate stage in workflow stages: {list(names)}")
        self._stages = names
        self._positions = {name: index for index, name in enumerate(names)}

    def __iter__(self) -> Iterator[str]:
        return iter(self._stages)

    def __len__(self) -> int:
        return len(self._stages)

    def __contains__(self, stage: object) -> bool:
        return stage in self._positions

    def __repr__(self) -> str:
        return f"StagePipeline({list(self._stages)!r})"

    @property
    def stages(self) -> tuple[str, ...]:
        return self._stages

    @property
    def first(self) -> str:
        return self._stages[0]

    @property
    def second(self) -> str:
        return self._stages[1]

    @property
    def terminal(self) -> str:
        return self._stages[-1]

    def validate(self, stage: str | None) -> str:
        if stage not in self._positions:
            raise InvalidStage(stage)
        return stage

    def index(self, stage: str) -> int:
        return self._positions[self.validate(stage)]

    def is_terminal(self, stage: str) -> bool:
        return stage == self.terminal

    def next_stage(self, stage: str) -> str | None:
        position = self.index(stage)
        if position == len(self._stages) - 1:
            return None
        return self._stages[position + 1]


@dataclass(frozen=True)
class WorkflowConfig:
    stages: Sequence[str] = DEFAULT_STAGES
    auto_progress_enabled: bool = False
    reminder_frequency: ReminderFrequency = ReminderFrequency.DAILY
    stall_days: int = 7
    deadline_threshold_days: int = 3
    pipeline: StagePipeline = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "pipeline", StagePipeline(self.stages))
        object.__setattr__(self, "reminder_frequency", ReminderFrequency(self.reminder_frequency))

    @classmethod
    def from_settings(cls, settings) -> "WorkflowConfig":
        return cls(
            stages=tuple(settings.workflow_stage_list),
            auto_progress_enabled=settings.workflow_auto_progress,
            reminder_frequency=ReminderFrequency(settings.workflow_reminder_frequency),
            stall_days=settings.workflow_stall_days,
            deadline_threshold_days=settings.workflow_deadline_threshold_days,
        )
