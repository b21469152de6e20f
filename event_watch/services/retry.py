"""
Bounded retry with exponential backoff.

Attempt 1 runs immediately; after failed attempt k the wait is
base_delay * 2**(k-1), capped at max_delay. A rate-limit failure adds one
extra pause (the server's retry_after hint, else rate_limit_delay, never more
than max_delay) before the backoff wait. When every attempt fails, or the
cancel event is set between attempts, the last error is surfaced inside
RetryExhausted (and chained as __cause__).
"""
import logging
import threading
import time
from typing import Any, Callable, Optional, Tuple, Type

from event_watch.config import RETRY_MAX_DELAY, RATE_LIMIT_EXTRA_DELAY
from event_watch.errors import RateLimited, RetryExhausted, TransientCollaboratorError

logger = logging.getLogger('services.retry')

_RATE_LIMIT_PHRASES = ('rate limit', 'rate_limit', 'too many requests')


def is_rate_limited(error: BaseException) -> bool:
    """True for RateLimited, an HTTP 429 status, or a vendor message that says so."""
    if isinstance(error, RateLimited):
        return True
    for attr in ('status_code', 'status'):
        if getattr(error, attr, None) == 429:
            return True
    msg = str(error).lower()
    return any(phrase in msg for phrase in _RATE_LIMIT_PHRASES)


def backoff_delay(attempt: int, base_delay: float, max_delay: float = RETRY_MAX_DELAY) -> float:
    """Wait after failed attempt number `attempt` (1-based)."""
    return min(base_delay * (2 ** (attempt - 1)), max_delay)


def with_retry(operation: Callable[[], Any],
               max_attempts: int = 3,
               base_delay: float = 5.0,
               *,
               max_delay: float = RETRY_MAX_DELAY,
               rate_limit_delay: float = RATE_LIMIT_EXTRA_DELAY,
               retry_on: Tuple[Type[BaseException], ...] = (TransientCollaboratorError,),
               sleep: Callable[[float], Any] = time.sleep,
               cancel_event: Optional[threading.Event] = None,
               description: str = 'operation') -> Any:
    """
    Call operation() until it succeeds or max_attempts is reached.

    Errors that are not instances of retry_on propagate immediately. A set
    cancel_event stops further attempts.
    """
    if max_attempts < 1:
        raise ValueError('max_attempts must be at least 1')

    def cancelled():
        return cancel_event is not None and cancel_event.is_set()

    last_error = None
    attempt = 0
    while attempt < max_attempts:
        attempt += 1
        try:
            return operation()
        except retry_on as e:
            last_error = e
            logger.warning("%s: attempt %d/%d failed: %s", description, attempt, max_attempts, e)
            if attempt == max_attempts or cancelled():
                break

            if is_rate_limited(e):
                extra = min(getattr(e, 'retry_after', None) or rate_limit_delay, max_delay)
                logger.info("%s: rate limited, pausing %.0fs", description, extra)
                sleep(extra)

            delay = backoff_delay(attempt, base_delay, max_delay)
            logger.info("%s: retrying in %.1fs", description, delay)
            sleep(delay)

            if cancelled():
                break

    if cancelled():
        logger.info("%s: stop requested, gave up after %d attempt(s)", description, attempt)
    raise RetryExhausted(last_error, attempt) from last_error
