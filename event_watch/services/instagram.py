"""
Instagram item source backed by Apify actors.

Two actors: one returns an account's recent posts, the other the handles the
account follows. Vendor failures are translated into SourceUnavailable /
RateLimited so the retry executor can decide what to do.
"""
import logging
import time
from datetime import datetime, timezone
from typing import Dict, List, Optional, Any

from event_watch.config import (
    APIFY_POSTS_ACTOR, APIFY_FOLLOWINGS_ACTOR, APIFY_TIMEOUT_SECS,
)
from event_watch.errors import SourceUnavailable, RateLimited
from event_watch.pipeline.base import Post, PostSource

logger = logging.getLogger('services.instagram')


def _parse_timestamp(value) -> Optional[datetime]:
    if value in (None, ''):
        return None
    try:
        if isinstance(value, (int, float)):
            return datetime.fromtimestamp(value, tz=timezone.utc)
        dt = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt
    except (ValueError, OverflowError, OSError):
        logger.debug("Unparseable post timestamp %r", value)
        return None


def post_from_item(item: Dict[str, Any], account: str = '') -> Optional[Post]:
    """Map one dataset item to a Post. Returns None for error/placeholder items."""
    post_id = item.get('id') or item.get('shortCode')
    if not post_id or item.get('error'):
        return None
    return Post(
        id=str(post_id),
        shortcode=item.get('shortCode') or '',
        url=item.get('url'),
        caption=item.get('caption') or '',
        display_url=item.get('displayUrl'),
        timestamp=_parse_timestamp(item.get('timestamp')),
        owner=item.get('ownerUsername') or account,
    )


def _translate(error: Exception, what: str) -> Exception:
    status = getattr(error, 'status_code', None)
    msg = str(error)
    if status == 429 or 'rate limit' in msg.lower():
        return RateLimited(f'{what}: {msg}')
    return SourceUnavailable(f'{what}: {msg}')


class ApifyInstagramSource(PostSource):
    """
    Usage:
        source = ApifyInstagramSource(apify_client)
        posts = source.fetch_recent_posts('some_handle', 5)
    """

    def __init__(self, client, posts_actor: str = APIFY_POSTS_ACTOR,
                 followings_actor: str = APIFY_FOLLOWINGS_ACTOR,
                 timeout_secs: int = APIFY_TIMEOUT_SECS):
        self.client = client
        self.posts_actor = posts_actor
        self.followings_actor = followings_actor
        self.timeout_secs = timeout_secs

    def _run_actor(self, actor_id: str, run_input: dict, what: str) -> List[Dict[str, Any]]:
        if self.client is None:
            raise SourceUnavailable(f'{what}: Apify client is not configured')

        started = time.time()
        try:
            run = self.client.actor(actor_id).call(run_input=run_input, timeout_secs=self.timeout_secs)
        except Exception as e:
            raise _translate(e, what) from e

        if not run:
            raise SourceUnavailable(f'{what}: actor {actor_id} returned no run')
        status = run.get('status')
        if status and status != 'SUCCEEDED':
            raise SourceUnavailable(f'{what}: actor run ended with status {status}')

        try:
            items = list(self.client.dataset(run['defaultDatasetId']).iterate_items())
        except Exception as e:
            raise _translate(e, what) from e

        logger.debug("%s: %d items in %.1fs", what, len(items), time.time() - started)
        return items

    def fetch_recent_posts(self, account: str, max_count: int) -> List[Post]:
        items = self._run_actor(
            self.posts_actor,
            {'username': [account], 'resultsLimit': max_count},
            f'posts of {account}',
        )
        posts = []
        for item in items:
            post = post_from_item(item, account)
            if post is not None:
                posts.append(post)
        return posts[:max_count]

    def fetch_followings(self, account: str, max_count: Optional[int] = None) -> List[str]:
        run_input = {'usernames': [account]}
        if max_count:
            run_input['maxCount'] = max_count
        items = self._run_actor(self.followings_actor, run_input, f'followings of {account}')

        handles = []
        seen = set()
        for item in items:
            handle = item.get('username') or item.get('userName')
            if not handle or handle in seen:
                continue
            seen.add(handle)
            handles.append(handle)
        if max_count:
            handles = handles[:max_count]
        return handles
