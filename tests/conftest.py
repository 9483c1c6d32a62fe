import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ['DATABASE_URL'] = 'sqlite://'
os.environ.setdefault('APP_ENV', 'test')
os.environ.setdefault('WORKFLOW_STAGES', 'draft,review,approved,scheduled,published')

from app.models import Base  # noqa: E402
from app.schemas.content import ContentSchema  # noqa: E402
from app.services.event_bus import EventBus  # noqa: E402
from app.services.workflow_engine import WorkflowEngine  # noqa: E402
from app.services.workflow_stages import WorkflowConfig  # noqa: E402
from app.services.workflow_store import WorkflowStore  # noqa: E402

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeContentStore:
    def __init__(self):
        self.items: dict[str, ContentSchema] = {}
        self.published: list[str] = []
        self.fail_publish = False

    def add(self, content_id: str, title: str = 'Launch post', type: str = 'article') -> ContentSchema:
        item = ContentSchema(id=content_id, title=title, type=type, status='draft')
        self.items[content_id] = item
        return item

    def find_by_id(self, content_id):
        return self.items.get(content_id)

    def mark_published(self, content_id):
        if self.fail_publish:
            raise RuntimeError('content service unavailable')
        self.published.append(content_id)

    def count_content(self):
        return len(self.items)


class RecordingNotifier:
    def __init__(self):
        self.sent: list[tuple[str, str, dict]] = []
        self.fail = False

    async def send_notification(self, user_id, event_type, payload):
        if self.fail:
            raise RuntimeError('smtp down')
        self.sent.append((user_id, event_type, payload))
        return {'success': True}

    def of_type(self, event_type):
        return [(user, payload) for user, kind, payload in self.sent if kind == event_type]


@pytest.fixture
def session_factory():
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def content_store():
    store = FakeContentStore()
    store.add('C1', title='Spring launch article')
    store.add('C2', title='Landing page refresh', type='page')
    store.add('C3', title='Teaser thread', type='social_post')
    return store


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def workflow_config():
    return WorkflowConfig(stages=('draft', 'review', 'approved', 'scheduled', 'published'))


@pytest.fixture
def store(session_factory):
    return WorkflowStore(session_factory)


@pytest.fixture
def engine(store, content_store, notifier, bus, workflow_config, clock):
    return WorkflowEngine(
        store,
        content_store,
        notifier=notifier,
        event_bus=bus,
        config=workflow_config,
        clock=clock,
    )


def assert_current_stage_matches_history(workflow):
    assert workflow.stage_history
    assert workflow.current_stage == workflow.stage_history[-1].stage
    stamps = [entry.timestamp for entry in workflow.stage_history]
    assert stamps == sorted(stamps)


@pytest.fixture
def check_invariant():
    return assert_current_stage_matches_history
