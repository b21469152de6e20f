"""Tests for event_watch.services.store — EventStore against in-memory SQLite."""
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from event_watch.errors import StoreUnavailable
from event_watch.models.history_sample import HistorySample
from event_watch.models.instagram_event import InstagramEvent
from event_watch.models.watched_account import WatchedAccount
from event_watch.services.store import EventStore

T0 = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def _event(post_id, confidence=95.0, event_type='conference', account='alice', post_date=T0):
    return InstagramEvent(
        account=account,
        post_id=post_id,
        post_url=f'https://www.instagram.com/p/{post_id}/',
        post_date=post_date,
        caption='Join us',
        image_url=None,
        is_event=True,
        event_type=event_type,
        event_details={'title': 'Summit'},
        confidence_score=confidence,
    )


class TestWatchList:

    def test_save_followings_inserts_row(self, store, db_session):
        added, removed = store.save_followings('main', ['a', 'b'], T0)
        assert added == ['a', 'b']
        assert removed == []
        row = db_session.query(WatchedAccount).filter_by(account='main').one()
        assert row.followings == ['a', 'b']
        assert row.last_checked_at is not None

    def test_save_followings_updates_in_place(self, store, db_session):
        store.save_followings('main', ['a', 'b', 'c'], T0)
        added, removed = store.save_followings('main', ['b', 'c', 'd'], T0 + timedelta(hours=4))
        assert added == ['d']
        assert removed == ['a']
        assert db_session.query(WatchedAccount).count() == 1

    def test_get_watched_account(self, store):
        store.save_followings('main', ['x'], T0)
        row = store.get_watched_account('main')
        assert row.followings == ['x']
        assert store.get_watched_account('other') is None

    def test_get_watched_accounts_in_insert_order(self, store):
        store.save_followings('first', ['a'], T0)
        store.save_followings('second', ['b'], T0)
        assert [r.account for r in store.get_watched_accounts()] == ['first', 'second']


class TestHistory:

    def test_query_history_near_returns_latest_before(self, store):
        store.record_history_sample('alice', 1, T0 - timedelta(days=3))
        store.record_history_sample('alice', 2, T0 - timedelta(hours=25))
        store.record_history_sample('alice', 9, T0 + timedelta(hours=1))
        sample = store.query_history_near('alice', T0 - timedelta(days=1))
        assert sample.followings_count == 2

    def test_query_history_near_none_when_too_early(self, store):
        store.record_history_sample('alice', 2, T0)
        assert store.query_history_near('alice', T0 - timedelta(days=1)) is None

    def test_history_is_per_account(self, store):
        store.record_history_sample('bob', 7, T0 - timedelta(days=2))
        assert store.query_history_near('alice', T0) is None

    def test_history_is_append_only(self, store, db_session):
        store.record_history_sample('alice', 2, T0)
        store.record_history_sample('alice', 2, T0)
        assert db_session.query(HistorySample).count() == 2


class TestEvents:

    def test_upsert_then_exists(self, store):
        assert store.event_exists('p1') is False
        store.upsert_event(_event('p1'))
        assert store.event_exists('p1') is True

    def test_upsert_twice_overwrites(self, store, db_session):
        store.upsert_event(_event('p1', confidence=91))
        store.upsert_event(_event('p1', confidence=99, event_type='seminar'))
        rows = db_session.query(InstagramEvent).all()
        assert len(rows) == 1
        assert rows[0].confidence_score == 99
        assert rows[0].event_type == 'seminar'

    def test_upsert_absorbs_concurrent_insert(self, session_factory, db_session):
        """A unique-constraint race on insert turns into an update."""
        real = EventStore(session_factory)
        real.upsert_event(_event('p1', confidence=91))

        calls = {'n': 0}

        def racing_factory():
            session = session_factory()
            calls['n'] += 1
            if calls['n'] == 1:
                original_query = session.query

                def query_missing_row(*args, **kwargs):
                    q = original_query(*args, **kwargs)
                    mock = MagicMock(wraps=q)
                    mock.filter_by.return_value.first.return_value = None
                    return mock
                session.query = query_missing_row
            return session

        EventStore(racing_factory).upsert_event(_event('p1', confidence=97))
        rows = db_session.query(InstagramEvent).all()
        assert len(rows) == 1
        assert rows[0].confidence_score == 97
        assert calls['n'] == 2

    def test_list_events_paginates_newest_first(self, store):
        for i in range(5):
            store.upsert_event(_event(f'p{i}', post_date=T0 + timedelta(hours=i)))
        page = store.list_events(limit=2, offset=0)
        assert [e['post_id'] for e in page['events']] == ['p4', 'p3']
        assert page['total_count'] == 5
        assert page['has_more'] is True

        last = store.list_events(limit=2, offset=4)
        assert [e['post_id'] for e in last['events']] == ['p0']
        assert last['has_more'] is False

    def test_list_events_confidence_filter(self, store):
        store.upsert_event(_event('low', confidence=90))
        store.upsert_event(_event('high', confidence=98))
        page = store.list_events(min_confidence=95)
        assert [e['post_id'] for e in page['events']] == ['high']
        assert page['total_count'] == 1

    def test_event_stats(self, store):
        store.upsert_event(_event('a', confidence=92, event_type='conference'))
        store.upsert_event(_event('b', confidence=96, event_type='seminar'))
        store.upsert_event(_event('c', confidence=99, event_type='conference'))
        store.upsert_event(_event('d', confidence=100, event_type=None))
        stats = store.event_stats()
        assert stats['total_events'] == 4
        assert stats['events_by_type'] == {'conference': 2, 'seminar': 1, 'other': 1}
        assert stats['confidence_distribution'] == {'90-94': 1, '95-97': 1, '98-100': 2}


class TestErrors:
    """SQLAlchemy failures surface as StoreUnavailable."""

    @pytest.fixture
    def broken_store(self):
        session = MagicMock()
        session.query.side_effect = OperationalError('SELECT', {}, Exception('db gone'))
        return EventStore(lambda: session), session

    def test_get_watched_accounts(self, broken_store):
        store, session = broken_store
        with pytest.raises(StoreUnavailable):
            store.get_watched_accounts()
        session.close.assert_called_once()

    def test_event_exists(self, broken_store):
        store, _ = broken_store
        with pytest.raises(StoreUnavailable):
            store.event_exists('p1')

    def test_upsert(self, broken_store):
        store, session = broken_store
        with pytest.raises(StoreUnavailable):
            store.upsert_event(_event('p1'))
        session.close.assert_called()

    def test_save_followings_rolls_back(self):
        session = MagicMock()
        session.query.return_value.filter_by.return_value.first.return_value = None
        session.commit.side_effect = IntegrityError('INSERT', {}, Exception('dup'))
        with pytest.raises(StoreUnavailable):
            EventStore(lambda: session).save_followings('main', ['a'])
        session.rollback.assert_called_once()
        session.close.assert_called_once()
