"""
Read-side queries for operators — scheduler status, events, followings trends.

Everything here returns plain dicts ready for JSON output.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Any

from event_watch import pidfile
from event_watch.config import HISTORY_CACHE_TTL, STATS_CACHE_TTL

logger = logging.getLogger('services.reporting')

CHANGE_WINDOWS = (
    ('daily_change', timedelta(days=1)),
    ('weekly_change', timedelta(days=7)),
    ('monthly_change', timedelta(days=30)),
)


def followings_stats(store, account: str, now: Optional[datetime] = None, cache=None) -> Dict[str, Any]:
    """
    Current followings count and its change over the last day/week/month.

    A change is current minus the latest history sample taken at or before
    the window start; with no such sample the change is 0.
    """
    now = now or datetime.now(timezone.utc)
    row = store.get_watched_account(account)
    total = len(row.followings or []) if row is not None else 0

    result = {
        'account': account,
        'total_followings': total,
        'last_checked_at': row.last_checked_at.isoformat() if row is not None and row.last_checked_at else None,
    }
    for name, window in CHANGE_WINDOWS:
        past = _history_count(store, account, now - window, cache)
        result[name] = total - past if past is not None else 0
    return result


def _history_count(store, account, when, cache):
    def lookup():
        sample = store.query_history_near(account, when)
        return sample.followings_count if sample is not None else None

    if cache is None:
        return lookup()
    # Hour granularity keeps the key stable across calls within one status refresh
    key = f"history:{account}:{when.strftime('%Y-%m-%dT%H')}"
    return cache.get_or_compute(key, HISTORY_CACHE_TTL, lookup)


def recent_events(store, limit: int = 20, offset: int = 0,
                  min_confidence: Optional[float] = None) -> Dict[str, Any]:
    return store.list_events(limit=limit, offset=offset, min_confidence=min_confidence)


def event_stats(store, cache=None) -> Dict[str, Any]:
    if cache is None:
        return store.event_stats()
    return cache.get_or_compute('event_stats', STATS_CACHE_TTL, store.event_stats)


def scheduler_status(pid_file: str, status_store=None, recent: int = 5) -> Dict[str, Any]:
    """Liveness from the PID file plus whatever the scheduler published to Redis."""
    pid = pidfile.read_pid(pid_file)
    running = pidfile.pid_alive(pid)
    result = {
        'is_running': running,
        'pid': pid if running else None,
        'stale_pid_file': bool(pid) and not running,
        'next_runs': {},
        'last_heartbeat': None,
        'recent_runs': {},
        'cache_stats': None,
    }
    if status_store is not None:
        heartbeat = status_store.last_heartbeat()
        if heartbeat:
            result['last_heartbeat'] = datetime.fromtimestamp(heartbeat['at'], tz=timezone.utc).isoformat()
        if running:
            result['next_runs'] = status_store.next_runs()
            result['cache_stats'] = status_store.cache_stats()
        result['recent_runs'] = {
            job: status_store.recent_runs(job, recent)
            for job in ('event_detection', 'followings_refresh')
        }
    return result
