"""Tests for event_watch.services.status — Redis-backed scheduler status."""
from datetime import datetime, timezone
from unittest.mock import MagicMock

from conftest import FakeRedis
from event_watch.services.status import MAX_RECENT_RUNS, SchedulerStatusStore


class TestSchedulerStatusStore:

    def test_heartbeat_roundtrip(self):
        status = SchedulerStatusStore(FakeRedis())
        status.heartbeat(4242)
        assert status.last_heartbeat()['pid'] == 4242

    def test_next_runs(self):
        status = SchedulerStatusStore(FakeRedis())
        when = datetime(2026, 3, 1, 14, 0, tzinfo=timezone.utc)
        status.set_next_run('event_detection', when)
        status.set_next_run('followings_refresh', None)
        assert status.next_runs() == {'event_detection': when.isoformat()}

    def test_recent_runs_newest_first_and_capped(self):
        status = SchedulerStatusStore(FakeRedis())
        for i in range(MAX_RECENT_RUNS + 5):
            status.record_run('event_detection', {'n': i})
        runs = status.recent_runs('event_detection', limit=MAX_RECENT_RUNS + 10)
        assert len(runs) == MAX_RECENT_RUNS
        assert runs[0]['n'] == MAX_RECENT_RUNS + 4

    def test_cache_stats_roundtrip(self):
        status = SchedulerStatusStore(FakeRedis())
        assert status.cache_stats() is None
        status.set_cache_stats({'hits': 5, 'misses': 2, 'keys': 4, 'hit_ratio': 0.7143})
        published = status.cache_stats()
        assert published['hits'] == 5
        assert published['hit_ratio'] == 0.7143
        assert published['at'] > 0

    def test_clear(self):
        redis = FakeRedis()
        status = SchedulerStatusStore(redis)
        status.heartbeat(1)
        status.set_cache_stats({'hits': 1})
        status.set_next_run('event_detection', datetime.now(timezone.utc))
        status.clear()
        assert status.last_heartbeat() is None
        assert status.cache_stats() is None
        assert status.next_runs() == {}

    def test_fails_open_when_redis_is_down(self):
        redis = MagicMock()
        for name in ('get', 'set', 'setex', 'hset', 'hdel', 'hgetall', 'lrange', 'pipeline', 'delete'):
            getattr(redis, name).side_effect = ConnectionError('redis down')
        status = SchedulerStatusStore(redis)

        status.heartbeat(1)
        status.set_next_run('event_detection', datetime.now(timezone.utc))
        status.record_run('event_detection', {'ok': True})
        status.set_cache_stats({'hits': 1})
        status.clear()
        assert status.last_heartbeat() is None
        assert status.next_runs() == {}
        assert status.recent_runs('event_detection') == []
        assert status.cache_stats() is None
