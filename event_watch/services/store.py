"""
Postgres persistence — watch list, followings history, accepted events.

Every public method opens its own session, commits or rolls back, and always
closes it. SQLAlchemy errors are re-raised as StoreUnavailable so callers
branch on one type; a unique-constraint race on upsert is absorbed.
"""
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple, Any

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from event_watch.database import get_session
from event_watch.errors import StoreUnavailable, PersistenceConflict
from event_watch.models.history_sample import HistorySample
from event_watch.models.instagram_event import InstagramEvent
from event_watch.models.watched_account import WatchedAccount

logger = logging.getLogger('services.store')

# Columns copied from an incoming event onto an existing row on upsert
_EVENT_FIELDS = (
    'account', 'post_url', 'post_date', 'caption', 'image_url',
    'is_event', 'event_type', 'event_details', 'confidence_score',
)

# Confidence histogram for accepted events (inclusive lower, exclusive upper)
CONFIDENCE_BUCKETS = (
    ('90-94', 90, 95),
    ('95-97', 95, 98),
    ('98-100', 98, 101),
)


def _utc(ts: Optional[datetime]) -> Optional[datetime]:
    if ts is None:
        return None
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


class EventStore:
    """SQLAlchemy-backed persistent store."""

    def __init__(self, session_factory=None):
        self._session_factory = session_factory or get_session

    def _session(self):
        return self._session_factory()

    # ── Watch list ────────────────────────────────────────────────────

    def get_watched_accounts(self) -> List[WatchedAccount]:
        session = self._session()
        try:
            rows = session.query(WatchedAccount).order_by(WatchedAccount.id).all()
            session.expunge_all()
            return rows
        except SQLAlchemyError as e:
            logger.error("Failed to load watched accounts", exc_info=True)
            raise StoreUnavailable(f'cannot load watched accounts: {e}') from e
        finally:
            session.close()

    def get_watched_account(self, account: str) -> Optional[WatchedAccount]:
        session = self._session()
        try:
            row = session.query(WatchedAccount).filter_by(account=account).first()
            if row is not None:
                session.expunge(row)
            return row
        except SQLAlchemyError as e:
            raise StoreUnavailable(f'cannot load watched account {account}: {e}') from e
        finally:
            session.close()

    def save_followings(self, account: str, followings: List[str],
                        checked_at: Optional[datetime] = None) -> Tuple[List[str], List[str]]:
        """
        Upsert the watch list row for account.

        Returns (new_follows, unfollows) relative to the previously stored list.
        """
        checked_at = _utc(checked_at) or datetime.now(timezone.utc)
        session = self._session()
        try:
            row = session.query(WatchedAccount).filter_by(account=account).first()
            previous = list(row.followings or []) if row is not None else []
            if row is None:
                row = WatchedAccount(account=account, followings=list(followings),
                                     last_checked_at=checked_at)
                session.add(row)
            else:
                row.followings = list(followings)
                row.last_checked_at = checked_at
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error("Failed to save followings for %s", account, exc_info=True)
            raise StoreUnavailable(f'cannot save followings for {account}: {e}') from e
        finally:
            session.close()

        before = set(previous)
        after = set(followings)
        new_follows = [a for a in followings if a not in before]
        unfollows = [a for a in previous if a not in after]
        return new_follows, unfollows

    # ── History ───────────────────────────────────────────────────────

    def record_history_sample(self, account: str, followings_count: int,
                              recorded_at: Optional[datetime] = None) -> None:
        session = self._session()
        try:
            session.add(HistorySample(
                account=account,
                followings_count=followings_count,
                recorded_at=_utc(recorded_at) or datetime.now(timezone.utc),
            ))
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise StoreUnavailable(f'cannot record history for {account}: {e}') from e
        finally:
            session.close()

    def query_history_near(self, account: str, timestamp: datetime) -> Optional[HistorySample]:
        """Latest sample recorded at or before timestamp, or None."""
        session = self._session()
        try:
            row = (
                session.query(HistorySample)
                .filter(HistorySample.account == account,
                        HistorySample.recorded_at <= _utc(timestamp))
                .order_by(HistorySample.recorded_at.desc())
                .first()
            )
            if row is not None:
                session.expunge(row)
            return row
        except SQLAlchemyError as e:
            raise StoreUnavailable(f'cannot query history for {account}: {e}') from e
        finally:
            session.close()

    # ── Events ────────────────────────────────────────────────────────

    def event_exists(self, post_id: str) -> bool:
        session = self._session()
        try:
            found = session.query(InstagramEvent.id).filter_by(post_id=post_id).first()
            return found is not None
        except SQLAlchemyError as e:
            raise StoreUnavailable(f'cannot check post {post_id}: {e}') from e
        finally:
            session.close()

    def upsert_event(self, event: InstagramEvent) -> None:
        """Insert or overwrite the event keyed by post_id (last write wins)."""
        values = {name: getattr(event, name) for name in _EVENT_FIELDS}
        values['post_date'] = _utc(values['post_date'])

        for attempt in (1, 2):
            session = self._session()
            try:
                self._write_event(session, event.post_id, values)
                return
            except PersistenceConflict:
                if attempt == 2:
                    raise StoreUnavailable(f'post {event.post_id} kept conflicting on insert')
                logger.info("Post %s inserted concurrently, updating instead", event.post_id)
            except SQLAlchemyError as e:
                logger.error("Failed to upsert post %s", event.post_id, exc_info=True)
                raise StoreUnavailable(f'cannot save post {event.post_id}: {e}') from e
            finally:
                session.close()

    @staticmethod
    def _write_event(session, post_id, values):
        row = session.query(InstagramEvent).filter_by(post_id=post_id).first()
        if row is None:
            session.add(InstagramEvent(post_id=post_id, **values))
        else:
            for name, value in values.items():
                setattr(row, name, value)
        try:
            session.commit()
        except IntegrityError as e:
            session.rollback()
            raise PersistenceConflict(str(e)) from e
        except SQLAlchemyError:
            session.rollback()
            raise

    def list_events(self, limit: int = 20, offset: int = 0,
                    min_confidence: Optional[float] = None,
                    account: Optional[str] = None) -> Dict[str, Any]:
        """Newest events first, with paging metadata."""
        limit = max(1, min(int(limit), 100))
        offset = max(0, int(offset))
        session = self._session()
        try:
            query = session.query(InstagramEvent)
            if min_confidence is not None:
                query = query.filter(InstagramEvent.confidence_score >= min_confidence)
            if account:
                query = query.filter(InstagramEvent.account == account)

            total = query.count()
            rows = (
                query.order_by(InstagramEvent.post_date.desc(), InstagramEvent.id.desc())
                .offset(offset)
                .limit(limit)
                .all()
            )
            return {
                'events': [r.to_dict() for r in rows],
                'total_count': total,
                'has_more': offset + len(rows) < total,
            }
        except SQLAlchemyError as e:
            raise StoreUnavailable(f'cannot list events: {e}') from e
        finally:
            session.close()

    def event_stats(self) -> Dict[str, Any]:
        """Totals, per-type counts and a confidence histogram."""
        session = self._session()
        try:
            total = session.query(func.count(InstagramEvent.id)).scalar() or 0
            by_type = {}
            grouped = (
                session.query(InstagramEvent.event_type, func.count(InstagramEvent.id))
                .group_by(InstagramEvent.event_type)
                .all()
            )
            for event_type, count in grouped:
                key = event_type or 'other'
                by_type[key] = by_type.get(key, 0) + count
            distribution = {}
            for label, low, high in CONFIDENCE_BUCKETS:
                distribution[label] = (
                    session.query(func.count(InstagramEvent.id))
                    .filter(InstagramEvent.confidence_score >= low,
                            InstagramEvent.confidence_score < high)
                    .scalar() or 0
                )
            return {
                'total_events': total,
                'events_by_type': by_type,
                'confidence_distribution': distribution,
            }
        except SQLAlchemyError as e:
            raise StoreUnavailable(f'cannot compute event stats: {e}') from e
        finally:
            session.close()
