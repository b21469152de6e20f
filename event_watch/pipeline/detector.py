"""
Event detection pipeline.

For every account the main account follows, in list order:
  fetch recent posts (with retry) → dedup guard → cached-or-fresh verdict
  (classifier call with retry) → upsert accepted events → stats.

Account and post failures are logged and skipped. Only failing to load the
account list aborts a run.
"""
import logging
import random
import threading
import time
from datetime import datetime, timezone
from typing import Callable, List, Optional

from event_watch.config import ANALYSIS_CACHE_TTL, FOLLOWINGS_CACHE_TTL, SchedulerConfig
from event_watch.errors import DataUnavailable, EventWatchError
from event_watch.models.instagram_event import InstagramEvent
from event_watch.pipeline.base import ClassificationVerdict, Post, RunStats
from event_watch.services.dedup import DedupGuard, analysis_cache_key
from event_watch.services.retry import with_retry

logger = logging.getLogger('pipeline.detector')

FOLLOWINGS_KEY = 'followings:{account}'


def followings_cache_key(account: str) -> str:
    return FOLLOWINGS_KEY.format(account=account)


def build_event(account: str, post: Post, verdict: ClassificationVerdict) -> InstagramEvent:
    """Turn an accepted verdict into an unsaved InstagramEvent row."""
    return InstagramEvent(
        account=account,
        post_id=post.id,
        post_url=post.permalink,
        post_date=post.timestamp or datetime.now(timezone.utc),
        caption=post.caption,
        image_url=post.display_url,
        is_event=verdict.is_event,
        event_type=verdict.event_type or 'other',
        event_details=dict(verdict.event_details),
        confidence_score=verdict.confidence_score,
    )


class EventDetector:
    """
    One instance per run. The config is a snapshot: edits to the YAML file
    only take effect on the next run.

    sleep is injectable; the scheduler passes its stop event's wait() so
    shutdown interrupts the inter-request delays.
    """

    def __init__(self, store, source, classifier, cache, config: SchedulerConfig,
                 main_account: Optional[str] = None,
                 sleep: Callable[[float], object] = time.sleep,
                 rng: Optional[random.Random] = None,
                 cancel_event: Optional[threading.Event] = None,
                 notifier: Optional[Callable] = None):
        self.store = store
        self.source = source
        self.classifier = classifier
        self.cache = cache
        self.config = config
        self.main_account = main_account
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._cancel = cancel_event or threading.Event()
        self._notifier = notifier

    # ── Accounts ──────────────────────────────────────────────────────

    def _load_followings(self) -> List[str]:
        if self.main_account:
            row = self.store.get_watched_account(self.main_account)
            rows = [row] if row is not None else []
        else:
            rows = self.store.get_watched_accounts()
        if not rows:
            raise DataUnavailable('no watched account in the store, run the followings refresh first')

        accounts = []
        seen = set()
        for row in rows:
            for handle in row.followings or []:
                if handle not in seen:
                    seen.add(handle)
                    accounts.append(handle)
        if not accounts:
            raise DataUnavailable('the watched account follows nobody')
        return accounts

    def resolve_accounts(self) -> List[str]:
        """
        Accounts to scan, in stored order, capped at config.max_accounts.

        Raises DataUnavailable when there is nothing to scan; StoreUnavailable
        propagates.
        """
        key = followings_cache_key(self.main_account or '*')
        accounts = self.cache.get_or_compute(key, FOLLOWINGS_CACHE_TTL, self._load_followings)
        if self.config.max_accounts:
            accounts = accounts[:self.config.max_accounts]
        return list(accounts)

    # ── Run ───────────────────────────────────────────────────────────

    def run(self) -> RunStats:
        stats = RunStats()
        try:
            accounts = self.resolve_accounts()
        except DataUnavailable as e:
            logger.warning("Nothing to scan: %s", e)
            return stats.finish()

        stats.accounts_total = len(accounts)
        logger.info("Scanning %d accounts (%d posts each, threshold %.0f)",
                    len(accounts), self.config.posts_per_account, self.config.min_confidence_threshold)

        guard = DedupGuard(self.store, self.cache)
        accepted = []
        for index, account in enumerate(accounts, 1):
            if self._cancel.is_set():
                stats.cancelled = True
                logger.info("Cancellation requested, stopping before @%s", account)
                break
            logger.info("[%d/%d] @%s", index, len(accounts), account)
            try:
                self._process_account(account, guard, stats, accepted)
            except Exception as e:
                stats.accounts_failed += 1
                stats.errors.append(f'@{account}: {e!r}')
                logger.error("Skipping @%s after unexpected error: %r", account, e, exc_info=True)

        stats.finish()
        self._log_summary(stats)
        if self._notifier is not None:
            self._notifier(stats, accepted)
        return stats

    def _retry(self, operation, description):
        return with_retry(
            operation,
            self.config.max_retries,
            self.config.retry_delay_seconds,
            sleep=self._sleep,
            cancel_event=self._cancel,
            description=description,
        )

    def _process_account(self, account: str, guard: DedupGuard, stats: RunStats, accepted: list):
        cfg = self.config
        self._sleep(self._rng.uniform(cfg.account_delay_min_seconds, cfg.account_delay_max_seconds))

        try:
            posts = self._retry(
                lambda: self.source.fetch_recent_posts(account, cfg.posts_per_account),
                f'fetch posts of @{account}',
            )
        except EventWatchError as e:
            stats.accounts_failed += 1
            stats.errors.append(f'@{account}: {e}')
            logger.error("Skipping @%s, could not fetch posts: %s", account, e)
            return

        if not posts:
            logger.info("@%s has no recent posts", account)
            stats.accounts_processed += 1
            return

        for post in posts:
            if self._cancel.is_set():
                stats.cancelled = True
                break
            try:
                self._process_post(account, post, guard, stats, accepted)
            except EventWatchError as e:
                stats.items_failed += 1
                stats.errors.append(f'@{account}/{post.id}: {e}')
                logger.error("Post %s of @%s failed: %s", post.id, account, e)
            except Exception as e:
                stats.items_failed += 1
                stats.errors.append(f'@{account}/{post.id}: {e!r}')
                logger.error("Post %s of @%s failed unexpectedly: %r", post.id, account, e, exc_info=True)

        stats.accounts_processed += 1

    def _process_post(self, account: str, post: Post, guard: DedupGuard, stats: RunStats, accepted: list):
        decision = guard.check(post.id)
        if decision.skip:
            stats.items_skipped += 1
            logger.debug("Post %s skipped (%s)", post.id, decision.value)
            return
        guard.mark_processed(post.id)

        computed = []

        def classify():
            computed.append(post.id)
            return self._retry(
                lambda: self.classifier.classify(post.caption, post.permalink, post.display_url),
                f'classify post {post.id}',
            )

        verdict = self.cache.get_or_compute(analysis_cache_key(post.id), ANALYSIS_CACHE_TTL, classify)
        if computed:
            stats.cache_misses += 1
        else:
            stats.cache_hits += 1
        stats.items_processed += 1

        if verdict.accepted(self.config.min_confidence_threshold):
            stats.events_detected += 1
            event = build_event(account, post, verdict)
            self.store.upsert_event(event)
            stats.events_persisted += 1
            accepted.append(event.to_dict())
            logger.info("Event in post %s of @%s (%s, %.0f%%)",
                        post.id, account, event.event_type, verdict.confidence_score)
        elif verdict.is_event:
            logger.info("Post %s of @%s below threshold (%.0f%%)", post.id, account, verdict.confidence_score)

        if computed:
            self._sleep(self.config.post_delay_seconds)

    def _log_summary(self, stats: RunStats):
        cumulative = self.cache.stats()
        logger.info("Detection run finished in %.0fs: %s", stats.duration_seconds, stats.summary())
        logger.info("Run cache: %d hits, %d misses (%.0f%%). Cumulative: %d hits, %d misses, %d keys",
                    stats.cache_hits, stats.cache_misses, stats.cache_hit_ratio * 100,
                    cumulative.hits, cumulative.misses, cumulative.keys)
        if stats.accounts_failed:
            logger.warning("%d of %d accounts failed", stats.accounts_failed, stats.accounts_total)
