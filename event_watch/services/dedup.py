"""
Dedup guard — never classify the same post twice.

Three layers, checked in order and short-circuiting on the first hit:
  1. posts already seen earlier in this run
  2. posts already stored as accepted events
  3. posts with a cached verdict (reused instead of calling the classifier)

One guard instance per run; the run-local set dies with it.
"""
import enum
import logging
import threading
from typing import Optional

from event_watch.pipeline.base import ClassificationVerdict

logger = logging.getLogger('services.dedup')

ANALYSIS_KEY = 'post_analysis:{post_id}'


def analysis_cache_key(post_id: str) -> str:
    return ANALYSIS_KEY.format(post_id=post_id)


class DedupDecision(enum.Enum):
    SEEN_IN_RUN = 'seen_in_run'
    PERSISTED = 'persisted'
    CACHED = 'cached'
    UNSEEN = 'unseen'

    @property
    def skip(self) -> bool:
        """Whether the post should be dropped without looking at it further."""
        return self in (DedupDecision.SEEN_IN_RUN, DedupDecision.PERSISTED)


class DedupGuard:

    def __init__(self, store, cache):
        self.store = store
        self.cache = cache
        self._seen = set()
        self._lock = threading.Lock()

    def check(self, post_id: str) -> DedupDecision:
        """
        Classify post_id against the three layers.

        A StoreUnavailable from layer 2 propagates: without the store we cannot
        tell whether the post was already handled.
        """
        with self._lock:
            if post_id in self._seen:
                return DedupDecision.SEEN_IN_RUN
        if self.store.event_exists(post_id):
            return DedupDecision.PERSISTED
        if self.cache.has(analysis_cache_key(post_id)):
            return DedupDecision.CACHED
        return DedupDecision.UNSEEN

    def should_process(self, post_id: str) -> bool:
        return not self.check(post_id).skip

    def mark_processed(self, post_id: str) -> None:
        with self._lock:
            self._seen.add(post_id)

    def cached_verdict(self, post_id: str) -> Optional[ClassificationVerdict]:
        return self.cache.peek(analysis_cache_key(post_id))

    @property
    def seen_count(self) -> int:
        with self._lock:
            return len(self._seen)
