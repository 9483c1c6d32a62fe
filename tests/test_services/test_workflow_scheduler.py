from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from app.services.workflow_scheduler import WorkflowReminderScheduler


@pytest.mark.asyncio
async def test_reminders_are_grouped_per_assignee(engine, notifier, clock):
    approaching = await engine.create_workflow(
        'C1', assignees=['alice', 'bob'], deadline=clock.now + timedelta(days=2)
    )
    overdue = await engine.create_workflow('C2', assignees=['alice'], deadline=clock.now - timedelta(hours=3))
    await engine.create_workflow('C3', assignees=['carol'])
    notifier.sent.clear()

    scheduler = WorkflowReminderScheduler(engine)
    grouped = await scheduler.send_workflow_reminders()

    assert set(grouped) == {'alice', 'bob'}
    reminders = dict(notifier.of_type('workflow_reminder'))
    assert set(reminders) == {'alice', 'bob'}
    assert [w['workflow_id'] for w in reminders['alice']['approaching_deadlines']] == [approaching.workflow_id]
    assert [w['workflow_id'] for w in reminders['alice']['overdue_content']] == [overdue.workflow_id]
    assert reminders['bob']['overdue_content'] == []


@pytest.mark.asyncio
async def test_stall_check_notifies_each_assignee_once(engine, notifier, clock):
    stale = await engine.create_workflow('C1', assignees=['alice', 'bob'])
    done = await engine.create_workflow('C2', assignees=['alice'])
    await engine.update_stage(done.workflow_id, 'published')
    clock.advance(days=8)
    notifier.sent.clear()

    scheduler = WorkflowReminderScheduler(engine)
    stalled = await scheduler.check_stalled_content()

    assert [w.workflow_id for w in stalled] == [stale.workflow_id]
    flagged = notifier.of_type('workflow_stalled')
    assert sorted(user for user, _ in flagged) == ['alice', 'bob']
    assert {payload['workflow_id'] for _, payload in flagged} == {stale.workflow_id}


@pytest.mark.asyncio
async def test_start_runs_stall_check_immediately(engine, notifier, clock):
    await engine.create_workflow('C1', assignees=['alice'])
    clock.advance(days=8)

    scheduler = WorkflowReminderScheduler(engine, frequency='weekly')
    scheduler.start()
    await scheduler.stop()

    assert [user for user, _ in notifier.of_type('workflow_stalled')] == ['alice']
    assert notifier.of_type('workflow_reminder') == []
    assert not scheduler.running


@pytest.mark.asyncio
async def test_overlapping_tick_is_skipped(engine):
    scheduler = WorkflowReminderScheduler(engine)

    async with scheduler._tick_lock:
        assert await scheduler.run_tick() is False
    assert await scheduler.run_tick() is True
    assert scheduler.last_tick_at is not None


@pytest.mark.asyncio
async def test_tick_failures_do_not_stop_the_loop(engine, monkeypatch):
    calls = []

    async def broken_overdue(now=None):
        calls.append(now)
        raise RuntimeError('database went away')

    monkeypatch.setattr(engine, 'get_overdue_content', broken_overdue)
    scheduler = WorkflowReminderScheduler(engine, interval_seconds=0.01)

    scheduler.start()
    await asyncio.sleep(0.1)
    assert scheduler.running
    await scheduler.stop()

    assert len(calls) >= 2


def test_interval_follows_reminder_frequency(engine):
    assert WorkflowReminderScheduler(engine, frequency='hourly').interval_seconds == 3600
    assert WorkflowReminderScheduler(engine).interval_seconds == 86400
    assert WorkflowReminderScheduler(engine, frequency='weekly').interval_seconds == 604800
