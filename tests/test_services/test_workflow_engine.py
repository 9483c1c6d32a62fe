from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from app.core.exceptions import ContentNotFound, DuplicateWorkflow, InvalidStage, WorkflowNotFound
from app.schemas.workflow import TransitionKind, WorkflowPriority
from app.services.event_bus import EventTopic


@pytest.mark.asyncio
async def test_create_workflow_defaults_to_first_stage(engine, check_invariant):
    workflow = await engine.create_workflow('C1')

    assert workflow.current_stage == 'draft'
    assert workflow.content_title == 'Spring launch article'
    assert workflow.content_type == 'article'
    assert workflow.priority == WorkflowPriority.NORMAL
    assert workflow.workflow_id.startswith('wf_')
    check_invariant(workflow)

    history = await engine.get_workflow_history(workflow.workflow_id)
    assert len(history) == 1
    assert history[0].from_stage is None
    assert history[0].to_stage == 'draft'
    assert history[0].kind == TransitionKind.CREATED
    assert history[0].notes == 'Workflow created'


@pytest.mark.asyncio
async def test_create_workflow_for_missing_content_fails(engine):
    with pytest.raises(ContentNotFound):
        await engine.create_workflow('nope')


@pytest.mark.asyncio
async def test_second_workflow_for_content_is_rejected(engine):
    original = await engine.create_workflow('C1', assignees=['alice'])

    with pytest.raises(DuplicateWorkflow):
        await engine.create_workflow('C1', initial_stage='review')

    current = await engine.get_workflow_for_content('C1')
    assert current == original
    assert len(await engine.get_workflow_history(original.workflow_id)) == 1


@pytest.mark.asyncio
async def test_invalid_initial_stage_writes_nothing(engine):
    with pytest.raises(InvalidStage):
        await engine.create_workflow('C1', initial_stage='archived')
    assert await engine.get_workflow_for_content('C1') is None


@pytest.mark.asyncio
async def test_create_notifies_assignees(engine, notifier, clock):
    deadline = clock.now + timedelta(days=5)
    workflow = await engine.create_workflow(
        'C2',
        initial_stage='review',
        assignees=['alice', 'bob', 'alice'],
        deadline=deadline,
        priority='high',
        metadata={'channel': 'blog'},
        user='editor',
    )

    assert workflow.assignees == ('alice', 'bob')
    assert workflow.deadline == deadline
    assert workflow.priority == WorkflowPriority.HIGH
    assert workflow.metadata == {'channel': 'blog'}
    assigned = notifier.of_type('assigned')
    assert [user for user, _ in assigned] == ['alice', 'bob']
    assert assigned[0][1]['updated_by'] == 'editor'
    assert assigned[0][1]['stage'] == 'review'


@pytest.mark.asyncio
async def test_update_stage_is_idempotent(engine, check_invariant):
    workflow = await engine.create_workflow('C1')

    first = await engine.update_stage(workflow.workflow_id, 'review', user='alice')
    second = await engine.update_stage(workflow.workflow_id, 'review', user='alice')

    assert first == second
    check_invariant(second)
    history = await engine.get_workflow_history(workflow.workflow_id)
    assert [(t.from_stage, t.to_stage) for t in history] == [('draft', 'review'), (None, 'draft')]
    assert len(second.stage_history) == 2


@pytest.mark.asyncio
async def test_concurrent_updates_to_same_stage_log_once(engine):
    workflow = await engine.create_workflow('C1')

    results = await asyncio.gather(
        *(engine.update_stage(workflow.workflow_id, 'approved') for _ in range(5))
    )

    assert {r.current_stage for r in results} == {'approved'}
    history = await engine.get_workflow_history(workflow.workflow_id)
    assert [t.to_stage for t in history] == ['approved', 'draft']


@pytest.mark.asyncio
async def test_update_stage_validation(engine):
    workflow = await engine.create_workflow('C1')

    with pytest.raises(InvalidStage):
        await engine.update_stage(workflow.workflow_id, 'archived')
    with pytest.raises(WorkflowNotFound):
        await engine.update_stage('wf_missing', 'review')

    assert (await engine.get_workflow(workflow.workflow_id)).current_stage == 'draft'


@pytest.mark.asyncio
async def test_expected_stage_guards_the_move(engine, notifier):
    workflow = await engine.create_workflow('C1', assignees=['alice'])
    await engine.update_stage(workflow.workflow_id, 'approved')

    stale = await engine.update_stage(workflow.workflow_id, 'review', expected_stage='draft')
    assert stale.current_stage == 'approved'
    assert len(await engine.get_workflow_history(workflow.workflow_id)) == 2

    moved = await engine.update_stage(workflow.workflow_id, 'scheduled', expected_stage='approved')
    assert moved.current_stage == 'scheduled'
    assert [p['to_stage'] for _, p in notifier.of_type('stage_changed')] == ['approved', 'scheduled']


@pytest.mark.asyncio
async def test_any_stage_is_reachable_directly(engine, check_invariant):
    workflow = await engine.create_workflow('C1')

    moved = await engine.update_stage(workflow.workflow_id, 'scheduled')
    back = await engine.update_stage(workflow.workflow_id, 'review')

    assert moved.current_stage == 'scheduled'
    assert back.current_stage == 'review'
    check_invariant(back)


@pytest.mark.asyncio
async def test_stage_change_notifies_with_from_and_to(engine, notifier):
    workflow = await engine.create_workflow('C1', assignees=['alice'])

    await engine.update_stage(workflow.workflow_id, 'review', user='bob')

    changes = notifier.of_type('stage_changed')
    assert len(changes) == 1
    user, payload = changes[0]
    assert user == 'alice'
    assert payload['from_stage'] == 'draft'
    assert payload['to_stage'] == 'review'
    assert payload['updated_by'] == 'bob'


@pytest.mark.asyncio
async def test_reaching_published_marks_content_and_emits_event(engine, content_store, bus):
    seen = []

    async def on_published(event):
        seen.append(event)

    bus.subscribe(EventTopic.CONTENT_PUBLISHED, on_published)
    workflow = await engine.create_workflow('C1')

    await engine.update_stage(workflow.workflow_id, 'published')
    await engine.update_stage(workflow.workflow_id, 'published')
    await bus.drain()

    assert content_store.published == ['C1']
    assert len(seen) == 1
    assert seen[0].content_id == 'C1'
    assert seen[0].workflow_id == workflow.workflow_id


@pytest.mark.asyncio
async def test_side_effect_failures_do_not_undo_transition(engine, content_store, notifier):
    workflow = await engine.create_workflow('C1', assignees=['alice'])
    content_store.fail_publish = True
    notifier.fail = True

    updated = await engine.update_stage(workflow.workflow_id, 'published')

    assert updated.current_stage == 'published'
    stored = await engine.get_workflow(workflow.workflow_id)
    assert stored.current_stage == 'published'
    assert len(await engine.get_workflow_history(workflow.workflow_id)) == 2


@pytest.mark.asyncio
async def test_update_assignees_notifies_only_new_assignees(engine, notifier, check_invariant):
    workflow = await engine.create_workflow('C1', assignees=['alice'])
    notifier.sent.clear()

    updated = await engine.update_assignees(workflow.workflow_id, ['alice', 'carol'], user='lead')

    assert updated.assignees == ('alice', 'carol')
    assert updated.current_stage == 'draft'
    assert updated.stage_history[-1].notes == 'Assignees updated: alice, carol'
    check_invariant(updated)
    assigned = notifier.of_type('assigned')
    assert [user for user, _ in assigned] == ['carol']
    assert assigned[0][1]['new_assignees'] == ['carol']

    history = await engine.get_workflow_history(workflow.workflow_id)
    assert history[0].kind == TransitionKind.ASSIGNEES_UPDATED
    assert history[0].from_stage == history[0].to_stage == 'draft'


@pytest.mark.asyncio
async def test_update_deadline_notifies_only_when_set(engine, notifier, clock, check_invariant):
    workflow = await engine.create_workflow('C1', assignees=['alice', 'bob'])
    deadline = clock.now + timedelta(days=2)

    updated = await engine.update_deadline(workflow.workflow_id, deadline)
    cleared = await engine.update_deadline(workflow.workflow_id, None)

    assert updated.deadline == deadline
    assert cleared.deadline is None
    assert cleared.stage_history[-1].notes == 'Deadline updated: None'
    check_invariant(cleared)
    assert [user for user, _ in notifier.of_type('deadline_updated')] == ['alice', 'bob']


@pytest.mark.asyncio
async def test_deadline_queries_skip_terminal_stage(engine, clock):
    soon = await engine.create_workflow('C1', deadline=clock.now + timedelta(days=1))
    late = await engine.create_workflow('C2', deadline=clock.now - timedelta(days=2))
    done = await engine.create_workflow('C3', deadline=clock.now - timedelta(days=3))
    await engine.update_stage(done.workflow_id, 'published')

    approaching = await engine.get_approaching_deadlines()
    overdue = await engine.get_overdue_content()

    assert [w.workflow_id for w in approaching] == [soon.workflow_id]
    assert [w.workflow_id for w in overdue] == [late.workflow_id]
    assert await engine.get_approaching_deadlines(days_threshold=0) == []


@pytest.mark.asyncio
async def test_workflows_by_stage_filters(engine, clock):
    article = await engine.create_workflow('C1', initial_stage='review', assignees=['alice'])
    clock.advance(minutes=5)
    page = await engine.create_workflow('C2', initial_stage='review', assignees=['bob'])
    await engine.create_workflow('C3')

    newest_first = await engine.get_workflows_by_stage('review')
    assert [w.workflow_id for w in newest_first] == [page.workflow_id, article.workflow_id]

    oldest_first = await engine.get_workflows_by_stage('review', sort_by='created_at')
    assert [w.workflow_id for w in oldest_first] == [article.workflow_id, page.workflow_id]

    by_created_desc = await engine.get_workflows_by_stage('review', sort_by='created_at', sort_order='desc')
    assert [w.workflow_id for w in by_created_desc] == [page.workflow_id, article.workflow_id]

    assert [w.workflow_id for w in await engine.get_workflows_by_stage('review', assignee='bob')] == [
        page.workflow_id
    ]
    assert [w.workflow_id for w in await engine.get_workflows_by_stage('review', content_type='article')] == [
        article.workflow_id
    ]
    assert len(await engine.get_workflows_by_stage('review', limit=1)) == 1

    with pytest.raises(InvalidStage):
        await engine.get_workflows_by_stage('archived')


@pytest.mark.asyncio
async def test_history_is_newest_first_and_limited(engine, clock):
    workflow = await engine.create_workflow('C1')
    for stage in ('review', 'approved', 'scheduled'):
        clock.advance(hours=1)
        await engine.update_stage(workflow.workflow_id, stage)

    history = await engine.get_workflow_history(workflow.workflow_id, limit=2)

    assert [t.to_stage for t in history] == ['scheduled', 'approved']
    assert history[0].timestamp > history[1].timestamp


@pytest.mark.asyncio
async def test_stalled_workflows(engine, clock):
    stale = await engine.create_workflow('C1')
    done = await engine.create_workflow('C2')
    await engine.update_stage(done.workflow_id, 'published')
    clock.advance(days=8)
    await engine.create_workflow('C3')

    stalled = await engine.get_stalled_workflows()

    assert [w.workflow_id for w in stalled] == [stale.workflow_id]
