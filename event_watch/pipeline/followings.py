"""
Followings refresh — keeps the watch list in sync with who the main account follows.
"""
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional

from event_watch.config import SchedulerConfig
from event_watch.errors import DataUnavailable
from event_watch.pipeline.detector import followings_cache_key
from event_watch.services.retry import with_retry

logger = logging.getLogger('pipeline.followings')


@dataclass
class FollowingsResult:
    account: str
    total: int
    new_follows: List[str] = field(default_factory=list)
    unfollows: List[str] = field(default_factory=list)
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            'account': self.account,
            'total': self.total,
            'new_follows': self.new_follows,
            'unfollows': self.unfollows,
            'checked_at': self.checked_at.isoformat(),
        }


def refresh_followings(account: str, source, store, cache, config: SchedulerConfig,
                       max_followings: Optional[int] = None,
                       sleep: Callable[[float], object] = time.sleep) -> FollowingsResult:
    """
    Fetch the followings of account, store them, and record a history sample.

    An empty list from the source is treated as a scraper glitch: nothing is
    overwritten and DataUnavailable is raised.
    """
    if not account:
        raise DataUnavailable('no main account configured')

    logger.info("Fetching followings of @%s", account)
    followings = with_retry(
        lambda: source.fetch_followings(account, max_followings),
        config.max_retries,
        config.retry_delay_seconds,
        sleep=sleep,
        description=f'fetch followings of @{account}',
    )
    if not followings:
        raise DataUnavailable(f'@{account} returned no followings, keeping the stored list')

    checked_at = datetime.now(timezone.utc)
    new_follows, unfollows = store.save_followings(account, followings, checked_at)
    store.record_history_sample(account, len(followings), checked_at)

    # The detector reads this list through the cache
    cache.delete(followings_cache_key(account))
    cache.delete(followings_cache_key('*'))

    if new_follows:
        logger.info("@%s started following %d account(s): %s",
                    account, len(new_follows), ', '.join(new_follows[:20]))
    if unfollows:
        logger.info("@%s unfollowed %d account(s): %s",
                    account, len(unfollows), ', '.join(unfollows[:20]))
    logger.info("@%s follows %d accounts", account, len(followings))

    return FollowingsResult(
        account=account,
        total=len(followings),
        new_follows=new_follows,
        unfollows=unfollows,
        checked_at=checked_at,
    )
