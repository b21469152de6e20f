"""
In-process TTL cache with hit/miss accounting.

Holds followings lists and classifier verdicts so a run never pays twice for
the same lookup. Entries expire a fixed number of seconds after they were
written (cachetools TLRUCache with a per-entry time-to-use). Expired entries
read as absent and are reclaimed on access; a background sweeper thread
purges the rest every check_period seconds.

get_or_compute() does not serialize concurrent misses on the same key: two
threads racing on an absent key may both call the producer. The store's
unique post_id constraint is the real dedup backstop, this cache only saves
money.
"""
import logging
import sys
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from cachetools import TLRUCache

from event_watch.config import CACHE_DEFAULT_TTL, CACHE_CHECK_PERIOD

logger = logging.getLogger('services.cache')

_MISSING = object()


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    keys: int = 0
    ksize: int = 0  # rough bytes held by keys
    vsize: int = 0  # rough bytes held by values

    @property
    def hit_ratio(self) -> float:
        lookups = self.hits + self.misses
        return self.hits / lookups if lookups else 0.0

    def to_dict(self) -> dict:
        return {
            'hits': self.hits,
            'misses': self.misses,
            'keys': self.keys,
            'ksize': self.ksize,
            'vsize': self.vsize,
            'hit_ratio': round(self.hit_ratio, 4),
        }


class _Entry:
    __slots__ = ('value', 'ttl')

    def __init__(self, value, ttl):
        self.value = value
        self.ttl = ttl


def _time_to_use(_key, entry, now):
    return now + entry.ttl


class TTLCache:
    """
    Thread-safe expiring key/value store.

    Usage:
        cache = TTLCache()
        cache.start()  # background sweeper
        verdict = cache.get_or_compute('post_analysis:123', ttl, lambda: classify(...))
    """

    def __init__(self, default_ttl: float = CACHE_DEFAULT_TTL,
                 check_period: float = CACHE_CHECK_PERIOD,
                 clock: Callable[[], float] = time.monotonic,
                 maxsize: int = sys.maxsize):
        self.default_ttl = default_ttl
        self.check_period = check_period
        self._data = TLRUCache(maxsize=maxsize, ttu=_time_to_use, timer=clock)
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._stop = threading.Event()
        self._sweeper = None

    # ── Reads ─────────────────────────────────────────────────────────

    def _lookup(self, key):
        """Return the live value or _MISSING. Caller holds the lock."""
        try:
            return self._data[key].value
        except KeyError:
            self._data.expire()
            return _MISSING

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            value = self._lookup(key)
            if value is _MISSING:
                self._misses += 1
                return default
            self._hits += 1
            return value

    def has(self, key: str) -> bool:
        """Presence check that does not touch the hit/miss counters."""
        with self._lock:
            return self._lookup(key) is not _MISSING

    def peek(self, key: str, default: Any = None) -> Any:
        """Like get() without counting a hit or miss."""
        with self._lock:
            value = self._lookup(key)
            return default if value is _MISSING else value

    # ── Writes ────────────────────────────────────────────────────────

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            raise ValueError('ttl must be positive')
        with self._lock:
            self._data[key] = _Entry(value, ttl)

    def delete(self, key: str) -> bool:
        with self._lock:
            live = key in self._data
            self._data.expire()
            self._data.pop(key, None)
            return live

    def clear(self) -> None:
        """Drop every entry. Hit/miss counters keep counting."""
        with self._lock:
            self._data.clear()

    def get_or_compute(self, key: str, ttl: Optional[float], producer: Callable[[], Any]) -> Any:
        """
        Return the cached value for key, or call producer() and cache its result.

        The producer runs outside the lock. If it raises, the error propagates
        and nothing is cached.
        """
        with self._lock:
            value = self._lookup(key)
            if value is not _MISSING:
                self._hits += 1
                return value
            self._misses += 1

        value = producer()
        self.set(key, value, ttl)
        return value

    # ── Expiry ────────────────────────────────────────────────────────

    def sweep(self) -> int:
        """Purge expired entries. Returns how many were removed."""
        with self._lock:
            expired = self._data.expire()
        if expired:
            logger.debug("Swept %d expired cache entries", len(expired))
        return len(expired)

    def _sweep_loop(self):
        while not self._stop.wait(self.check_period):
            try:
                self.sweep()
            except Exception:
                logger.error("Cache sweep failed", exc_info=True)

    def start(self) -> None:
        """Start the background sweeper thread (idempotent)."""
        if self._sweeper is not None and self._sweeper.is_alive():
            return
        self._stop.clear()
        self._sweeper = threading.Thread(target=self._sweep_loop, name='cache-sweeper', daemon=True)
        self._sweeper.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout)
            self._sweeper = None

    # ── Stats ─────────────────────────────────────────────────────────

    def stats(self) -> CacheStats:
        with self._lock:
            self._data.expire()
            live = []
            for k in list(self._data):
                try:
                    live.append((k, self._data[k]))
                except KeyError:
                    continue  # expired since the purge
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                keys=len(live),
                ksize=sum(sys.getsizeof(k) for k, _ in live),
                vsize=sum(sys.getsizeof(e.value) for _, e in live),
            )

    def __len__(self):
        return self.stats().keys
