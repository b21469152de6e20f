"""Tests for event_watch.pipeline.followings — the watch list refresh job."""
import pytest

from conftest import FakeSource
from event_watch.errors import DataUnavailable, RetryExhausted
from event_watch.models.history_sample import HistorySample
from event_watch.pipeline.detector import followings_cache_key
from event_watch.pipeline.followings import refresh_followings

MAIN = 'main_account'


class TestRefreshFollowings:

    def test_first_refresh_stores_list_and_history(self, store, cache, fast_config, db_session):
        source = FakeSource(followings=['a', 'b', 'c'])
        result = refresh_followings(MAIN, source, store, cache, fast_config, sleep=lambda s: None)

        assert result.total == 3
        assert result.new_follows == ['a', 'b', 'c']
        assert store.get_watched_account(MAIN).followings == ['a', 'b', 'c']
        samples = db_session.query(HistorySample).all()
        assert [(s.account, s.followings_count) for s in samples] == [(MAIN, 3)]

    def test_reports_follows_and_unfollows(self, store, cache, fast_config):
        store.save_followings(MAIN, ['a', 'b'])
        result = refresh_followings(MAIN, FakeSource(followings=['b', 'c']), store, cache, fast_config,
                                    sleep=lambda s: None)
        assert result.new_follows == ['c']
        assert result.unfollows == ['a']

    def test_invalidates_cached_account_list(self, store, cache, fast_config):
        cache.set(followings_cache_key(MAIN), ['stale'], 3600)
        refresh_followings(MAIN, FakeSource(followings=['fresh']), store, cache, fast_config,
                           sleep=lambda s: None)
        assert not cache.has(followings_cache_key(MAIN))

    def test_empty_list_keeps_stored_followings(self, store, cache, fast_config):
        store.save_followings(MAIN, ['a', 'b'])
        with pytest.raises(DataUnavailable):
            refresh_followings(MAIN, FakeSource(followings=[]), store, cache, fast_config,
                               sleep=lambda s: None)
        assert store.get_watched_account(MAIN).followings == ['a', 'b']

    def test_source_retried_then_gives_up(self, store, cache, fast_config):
        sleeps = []
        source = FakeSource(followings=['a'], failures={MAIN: 10})
        with pytest.raises(RetryExhausted):
            refresh_followings(MAIN, source, store, cache, fast_config, sleep=sleeps.append)
        assert len(source.followings_calls) == fast_config.max_retries
        assert sleeps == [1, 2]

    def test_requires_account(self, store, cache, fast_config):
        with pytest.raises(DataUnavailable):
            refresh_followings(None, FakeSource(), store, cache, fast_config)

    def test_result_to_dict(self, store, cache, fast_config):
        result = refresh_followings(MAIN, FakeSource(followings=['a']), store, cache, fast_config,
                                    sleep=lambda s: None)
        data = result.to_dict()
        assert data['account'] == MAIN
        assert data['total'] == 1
        assert 'checked_at' in data
