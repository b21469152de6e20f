"""
Scheduler liveness in Redis: heartbeat, next-run times, recent run stats
and the shared cache counters.

Written by the scheduler, read by `event-watch status`. Like the circuit
breaker state, every Redis call fails open: a Redis outage degrades status
reporting, never the jobs themselves.
"""
import json
import logging
import time
from datetime import datetime
from typing import Dict, List, Optional

logger = logging.getLogger('services.status')

HEARTBEAT_TTL = 15 * 60
MAX_RECENT_RUNS = 50


class SchedulerStatusStore:

    PREFIX = 'event_watch:scheduler'

    def __init__(self, redis_client):
        self.redis = redis_client

    # ── Redis keys ────────────────────────────────────────────────────

    @property
    def _heartbeat_key(self):
        return f'{self.PREFIX}:heartbeat'

    @property
    def _next_runs_key(self):
        return f'{self.PREFIX}:next_runs'

    @property
    def _cache_stats_key(self):
        return f'{self.PREFIX}:cache_stats'

    def _runs_key(self, job):
        return f'{self.PREFIX}:runs:{job}'

    # ── Writes ────────────────────────────────────────────────────────

    def heartbeat(self, pid: int) -> None:
        try:
            payload = json.dumps({'pid': pid, 'at': time.time()})
            self.redis.setex(self._heartbeat_key, HEARTBEAT_TTL, payload)
        except Exception as e:
            logger.debug("Heartbeat not recorded: %s", e)

    def set_next_run(self, job: str, when: Optional[datetime]) -> None:
        try:
            if when is None:
                self.redis.hdel(self._next_runs_key, job)
            else:
                self.redis.hset(self._next_runs_key, job, when.isoformat())
        except Exception as e:
            logger.debug("Next run for %s not recorded: %s", job, e)

    def set_cache_stats(self, stats: Dict) -> None:
        try:
            payload = dict(stats, at=time.time())
            self.redis.set(self._cache_stats_key, json.dumps(payload, default=str))
        except Exception as e:
            logger.debug("Cache stats not recorded: %s", e)

    def record_run(self, job: str, result: Dict) -> None:
        try:
            pipe = self.redis.pipeline()
            pipe.lpush(self._runs_key(job), json.dumps(result, default=str))
            pipe.ltrim(self._runs_key(job), 0, MAX_RECENT_RUNS - 1)
            pipe.execute()
        except Exception as e:
            logger.debug("Run result for %s not recorded: %s", job, e)

    def clear(self) -> None:
        try:
            self.redis.delete(self._heartbeat_key, self._next_runs_key, self._cache_stats_key)
        except Exception as e:
            logger.debug("Status not cleared: %s", e)

    # ── Reads ─────────────────────────────────────────────────────────

    def last_heartbeat(self) -> Optional[Dict]:
        try:
            raw = self.redis.get(self._heartbeat_key)
            return json.loads(raw) if raw else None
        except Exception:
            return None

    def next_runs(self) -> Dict[str, str]:
        try:
            return dict(self.redis.hgetall(self._next_runs_key) or {})
        except Exception:
            return {}

    def cache_stats(self) -> Optional[Dict]:
        try:
            raw = self.redis.get(self._cache_stats_key)
            return json.loads(raw) if raw else None
        except Exception:
            return None

    def recent_runs(self, job: str, limit: int = 10) -> List[Dict]:
        try:
            raw = self.redis.lrange(self._runs_key(job), 0, max(0, limit - 1))
        except Exception:
            return []
        runs = []
        for item in raw or []:
            try:
                runs.append(json.loads(item))
            except (TypeError, ValueError):
                continue
        return runs
