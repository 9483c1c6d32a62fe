from __future__ import annotations

import pytest

from app.config import Settings
from app.core.exceptions import InvalidStage, ValidationError
from app.services.workflow_stages import ReminderFrequency, StagePipeline, WorkflowConfig


def test_pipeline_order_and_neighbours():
    pipeline = StagePipeline(['draft', 'review', 'approved', 'scheduled', 'published'])

    assert pipeline.first == 'draft'
    assert pipeline.second == 'review'
    assert pipeline.terminal == 'published'
    assert pipeline.next_stage('review') == 'approved'
    assert pipeline.next_stage('published') is None
    assert pipeline.is_terminal('published')
    assert 'scheduled' in pipeline
    assert list(pipeline) == ['draft', 'review', 'approved', 'scheduled', 'published']


def test_pipeline_rejects_unknown_stage():
    pipeline = StagePipeline(['outline', 'edit', 'live'])

    with pytest.raises(InvalidStage):
        pipeline.validate('draft')
    with pytest.raises(InvalidStage):
        pipeline.next_stage('draft')
    assert pipeline.validate('edit') == 'edit'


@pytest.mark.parametrize('stages', [[], ['draft'], ['draft', 'review', 'draft']])
def test_pipeline_rejects_bad_configuration(stages):
    with pytest.raises(ValidationError):
        StagePipeline(stages)


def test_reminder_frequency_intervals():
    assert ReminderFrequency.HOURLY.interval_ms == 3_600_000
    assert ReminderFrequency.DAILY.interval_ms == 86_400_000
    assert ReminderFrequency.WEEKLY.interval_ms == 604_800_000


def test_config_from_settings():
    settings = Settings(
        WORKFLOW_STAGES=' idea, draft ,published ',
        WORKFLOW_AUTO_PROGRESS=True,
        WORKFLOW_REMINDER_FREQUENCY='hourly',
        WORKFLOW_STALL_DAYS=10,
    )

    config = WorkflowConfig.from_settings(settings)

    assert list(config.pipeline) == ['idea', 'draft', 'published']
    assert config.auto_progress_enabled is True
    assert config.reminder_frequency is ReminderFrequency.HOURLY
    assert config.stall_days == 10
    assert config.deadline_threshold_days == 3


def test_settings_reject_duplicate_stages():
    with pytest.raises(ValueError):
        Settings(WORKFLOW_STAGES='draft,review,draft')
