"""Shared test fixtures."""
import threading
from typing import Dict, List

import pytest
from sqlalchemy.orm import sessionmaker

from event_watch.config import SchedulerConfig
from event_watch.database import Base, build_engine
from event_watch.errors import SourceUnavailable
from event_watch.pipeline.base import ClassificationVerdict, Classifier, Post, PostSource


@pytest.fixture
def db_engine():
    """In-memory SQLite engine with schema created, shared across threads."""
    engine = build_engine('sqlite:///:memory:')
    import event_watch.models.watched_account
    import event_watch.models.history_sample
    import event_watch.models.instagram_event
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine)


@pytest.fixture
def db_session(session_factory):
    """Session for assertions. Rolls back after each test."""
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def store(session_factory):
    from event_watch.services.store import EventStore
    return EventStore(session_factory)


@pytest.fixture
def cache():
    from event_watch.services.cache import TTLCache
    return TTLCache()


@pytest.fixture
def fast_config():
    """Valid config with every artificial delay set to zero."""
    return SchedulerConfig(
        posts_per_account=5,
        min_confidence_threshold=90,
        max_retries=3,
        retry_delay_seconds=1,
        account_delay_min_seconds=0,
        account_delay_max_seconds=0,
        post_delay_seconds=0,
    )


class FakeSource(PostSource):
    """Item source double. posts maps account → list of Post; failures maps account → count of failures."""

    def __init__(self, posts: Dict[str, List[Post]] = None, followings: List[str] = None,
                 failures: Dict[str, int] = None):
        self.posts = posts or {}
        self.followings = followings or []
        self.failures = dict(failures or {})
        self.post_calls = []
        self.followings_calls = []

    def fetch_recent_posts(self, account, max_count):
        self.post_calls.append(account)
        if self.failures.get(account, 0) > 0:
            self.failures[account] -= 1
            raise SourceUnavailable(f'{account} is down')
        return list(self.posts.get(account, []))[:max_count]

    def fetch_followings(self, account, max_count=None):
        self.followings_calls.append(account)
        if self.failures.get(account, 0) > 0:
            self.failures[account] -= 1
            raise SourceUnavailable(f'{account} is down')
        return list(self.followings)


class FakeClassifier(Classifier):
    """Classifier double. verdicts maps post caption → verdict or exception."""

    def __init__(self, verdicts=None, default=None):
        self.verdicts = verdicts or {}
        self.default = default or ClassificationVerdict(is_event=False, confidence_score=10)
        self.calls = []
        self._lock = threading.Lock()

    def classify(self, caption, post_url, image_url=None):
        with self._lock:
            self.calls.append(caption)
        result = self.verdicts.get(caption, self.default)
        if isinstance(result, Exception):
            raise result
        return result


class FakeRedis:
    """Minimal in-memory Redis fake for status tests."""

    def __init__(self):
        self.kv = {}
        self.hashes = {}
        self.lists = {}

    def get(self, key):
        return self.kv.get(key)

    def set(self, key, value):
        self.kv[key] = value

    def setex(self, key, ttl, value):
        self.kv[key] = value

    def delete(self, *keys):
        for k in keys:
            self.kv.pop(k, None)
            self.hashes.pop(k, None)
            self.lists.pop(k, None)

    def hset(self, key, field, value):
        self.hashes.setdefault(key, {})[field] = value

    def hdel(self, key, field):
        self.hashes.get(key, {}).pop(field, None)

    def hgetall(self, key):
        return dict(self.hashes.get(key, {}))

    def lpush(self, key, value):
        self.lists.setdefault(key, []).insert(0, value)

    def ltrim(self, key, start, end):
        self.lists[key] = self.lists.get(key, [])[start:end + 1]

    def lrange(self, key, start, end):
        return self.lists.get(key, [])[start:end + 1]

    def pipeline(self):
        return FakePipeline(self)


class FakePipeline:
    """Fake Redis pipeline that queues calls and replays them on execute()."""

    def __init__(self, redis):
        self._redis = redis
        self._ops = []

    def lpush(self, key, value):
        self._ops.append(('lpush', key, value))
        return self

    def ltrim(self, key, start, end):
        self._ops.append(('ltrim', key, start, end))
        return self

    def execute(self):
        for name, *args in self._ops:
            getattr(self._redis, name)(*args)
        self._ops = []


def make_post(post_id, caption=None, **kwargs):
    return Post(id=post_id, shortcode=f'sc_{post_id}', caption=caption or f'caption {post_id}', **kwargs)


@pytest.fixture
def fake_redis():
    return FakeRedis()
