"""
Pipeline contracts.

Collaborators (the post source and the classifier) implement the ABCs below;
the detector and the followings job only see these uniform interfaces, so
tests can swap in fakes and count calls.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Any, Optional

INSTAGRAM_POST_URL = 'https://www.instagram.com/p/{shortcode}/'


@dataclass
class Post:
    """One post as delivered by the item source."""
    id: str
    shortcode: str = ''
    url: Optional[str] = None
    caption: str = ''
    display_url: Optional[str] = None
    timestamp: Optional[datetime] = None
    owner: str = ''

    @property
    def permalink(self) -> str:
        if self.url:
            return self.url
        return INSTAGRAM_POST_URL.format(shortcode=self.shortcode or self.id)


@dataclass(frozen=True)
class ClassificationVerdict:
    """Structured classifier output. Only is_event and confidence_score are required."""
    is_event: bool
    confidence_score: float
    event_type: Optional[str] = None
    event_details: Dict[str, Any] = field(default_factory=dict)

    def accepted(self, threshold: float) -> bool:
        return self.is_event and self.confidence_score >= threshold

    def to_dict(self) -> Dict[str, Any]:
        return {
            'is_event': self.is_event,
            'confidence_score': self.confidence_score,
            'event_type': self.event_type,
            'event_details': dict(self.event_details),
        }


@dataclass
class RunStats:
    """Counters for one event detection run."""
    accounts_total: int = 0
    accounts_processed: int = 0
    accounts_failed: int = 0
    items_processed: int = 0
    items_skipped: int = 0
    items_failed: int = 0
    events_detected: int = 0
    events_persisted: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    cancelled: bool = False
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    errors: List[str] = field(default_factory=list)

    @property
    def cache_hit_ratio(self) -> float:
        lookups = self.cache_hits + self.cache_misses
        return self.cache_hits / lookups if lookups else 0.0

    @property
    def duration_seconds(self) -> float:
        end = self.finished_at or datetime.now(timezone.utc)
        return (end - self.started_at).total_seconds()

    def finish(self):
        self.finished_at = datetime.now(timezone.utc)
        return self

    def summary(self) -> str:
        return (
            f"{self.accounts_processed} of {self.accounts_total} accounts processed, "
            f"{self.accounts_failed} failed; {self.items_processed} posts classified, "
            f"{self.items_skipped} skipped, {self.items_failed} failed; "
            f"{self.events_detected} events detected, {self.events_persisted} saved; "
            f"cache hit ratio {self.cache_hit_ratio:.0%}"
            + (" (cancelled)" if self.cancelled else "")
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'accounts_total': self.accounts_total,
            'accounts_processed': self.accounts_processed,
            'accounts_failed': self.accounts_failed,
            'items_processed': self.items_processed,
            'items_skipped': self.items_skipped,
            'items_failed': self.items_failed,
            'events_detected': self.events_detected,
            'events_persisted': self.events_persisted,
            'cache_hits': self.cache_hits,
            'cache_misses': self.cache_misses,
            'cache_hit_ratio': round(self.cache_hit_ratio, 4),
            'cancelled': self.cancelled,
            'started_at': self.started_at.isoformat(),
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
            'duration_seconds': round(self.duration_seconds, 1),
            'errors': self.errors[-20:],
        }


class PostSource(ABC):
    """Delivers posts and followings for an Instagram account."""

    @abstractmethod
    def fetch_recent_posts(self, account: str, max_count: int) -> List[Post]:
        """Most recent posts first. Raises SourceUnavailable or RateLimited."""

    @abstractmethod
    def fetch_followings(self, account: str, max_count: Optional[int] = None) -> List[str]:
        """Handles the account follows. Raises SourceUnavailable or RateLimited."""


class Classifier(ABC):
    """Decides whether a post announces an event."""

    @abstractmethod
    def classify(self, caption: str, post_url: str, image_url: Optional[str] = None) -> ClassificationVerdict:
        """Raises ServiceUnavailable, RateLimited or MalformedResponse."""
