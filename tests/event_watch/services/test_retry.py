"""Tests for event_watch.services.retry — with_retry() backoff behaviour."""
import threading

import pytest

from event_watch.errors import (
    RateLimited, RetryExhausted, ServiceUnavailable, SourceUnavailable,
)
from event_watch.services.retry import backoff_delay, is_rate_limited, with_retry


class Flaky:
    """Callable that fails `failures` times, then returns `value`."""

    def __init__(self, failures, value='ok', error_factory=None):
        self.failures = failures
        self.value = value
        self.calls = 0
        self.error_factory = error_factory or (lambda n: ServiceUnavailable(f'failure {n}'))

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error_factory(self.calls)
        return self.value


@pytest.fixture
def sleeps():
    return []


class TestWithRetry:

    @pytest.mark.parametrize('n', [1, 2, 3, 5])
    def test_succeeds_on_last_attempt(self, n, sleeps):
        op = Flaky(failures=n - 1)
        assert with_retry(op, max_attempts=n, base_delay=1, sleep=sleeps.append) == 'ok'
        assert op.calls == n

    def test_first_attempt_runs_without_waiting(self, sleeps):
        op = Flaky(failures=0)
        with_retry(op, max_attempts=3, base_delay=5, sleep=sleeps.append)
        assert sleeps == []

    @pytest.mark.parametrize('n', [1, 3, 4])
    def test_exhaustion_surfaces_last_error(self, n, sleeps):
        op = Flaky(failures=100)
        with pytest.raises(RetryExhausted) as exc_info:
            with_retry(op, max_attempts=n, base_delay=1, sleep=sleeps.append)
        assert op.calls == n
        assert exc_info.value.attempts == n
        assert str(exc_info.value.last_error) == f'failure {n}'
        assert exc_info.value.__cause__ is exc_info.value.last_error
        assert f'failure {n}' in str(exc_info.value)

    def test_exponential_backoff_between_attempts(self, sleeps):
        with pytest.raises(RetryExhausted):
            with_retry(Flaky(failures=10), max_attempts=4, base_delay=5, sleep=sleeps.append)
        assert sleeps == [5, 10, 20]

    def test_backoff_is_capped(self, sleeps):
        with pytest.raises(RetryExhausted):
            with_retry(Flaky(failures=10), max_attempts=6, base_delay=10, max_delay=30,
                       sleep=sleeps.append)
        assert sleeps == [10, 20, 30, 30, 30]

    def test_rate_limit_adds_extra_pause(self, sleeps):
        op = Flaky(failures=1, error_factory=lambda n: RateLimited('slow down'))
        assert with_retry(op, max_attempts=2, base_delay=5, rate_limit_delay=15,
                          sleep=sleeps.append) == 'ok'
        assert sleeps == [15, 5]

    def test_rate_limit_detected_from_message(self, sleeps):
        op = Flaky(failures=1, error_factory=lambda n: SourceUnavailable('HTTP Error: Too Many Requests'))
        with_retry(op, max_attempts=2, base_delay=2, rate_limit_delay=12, sleep=sleeps.append)
        assert sleeps == [12, 2]

    def test_retry_after_overrides_fixed_pause(self, sleeps):
        op = Flaky(failures=1, error_factory=lambda n: RateLimited('quota', retry_after=3))
        with_retry(op, max_attempts=2, base_delay=1, sleep=sleeps.append)
        assert sleeps == [3, 1]

    def test_retry_after_hint_is_capped(self, sleeps):
        op = Flaky(failures=1, error_factory=lambda n: RateLimited('quota', retry_after=3600))
        with_retry(op, max_attempts=2, base_delay=1, max_delay=60, sleep=sleeps.append)
        assert sleeps == [60, 1]

    def test_digits_in_account_name_are_not_a_rate_limit(self, sleeps):
        op = Flaky(failures=1, error_factory=lambda n: SourceUnavailable('posts of club1429: connection reset'))
        with_retry(op, max_attempts=2, base_delay=1, sleep=sleeps.append)
        assert sleeps == [1]

    def test_cancel_event_stops_further_attempts(self, sleeps):
        stop = threading.Event()
        calls = []

        def op():
            calls.append(1)
            stop.set()
            raise ServiceUnavailable('down')

        with pytest.raises(RetryExhausted) as exc_info:
            with_retry(op, max_attempts=5, base_delay=1, sleep=sleeps.append, cancel_event=stop)
        assert len(calls) == 1
        assert exc_info.value.attempts == 1
        assert sleeps == []

    def test_cancel_during_backoff_skips_next_attempt(self, sleeps):
        stop = threading.Event()
        op = Flaky(failures=10)

        def interrupted_sleep(seconds):
            sleeps.append(seconds)
            stop.set()

        with pytest.raises(RetryExhausted):
            with_retry(op, max_attempts=5, base_delay=1, sleep=interrupted_sleep, cancel_event=stop)
        assert op.calls == 1
        assert sleeps == [1]

    def test_non_retryable_error_propagates_immediately(self, sleeps):
        op = Flaky(failures=5, error_factory=lambda n: KeyError('bug'))
        with pytest.raises(KeyError):
            with_retry(op, max_attempts=5, base_delay=1, sleep=sleeps.append)
        assert op.calls == 1
        assert sleeps == []

    def test_custom_retry_on(self, sleeps):
        op = Flaky(failures=1, error_factory=lambda n: ConnectionError('reset'))
        assert with_retry(op, max_attempts=2, base_delay=1, retry_on=(ConnectionError,),
                          sleep=sleeps.append) == 'ok'

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            with_retry(lambda: 1, max_attempts=0)


class TestHelpers:

    def test_backoff_delay(self):
        assert [backoff_delay(k, 5) for k in (1, 2, 3)] == [5, 10, 20]
        assert backoff_delay(10, 5, max_delay=60) == 60

    @pytest.mark.parametrize('error,expected', [
        (RateLimited(), True),
        (ServiceUnavailable('Rate limit reached for gpt-4o-mini'), True),
        (ServiceUnavailable('error code: rate_limit_exceeded'), True),
        (ServiceUnavailable('connection reset'), False),
        (SourceUnavailable('posts of club1429: timeout'), False),
        (type('HTTPError', (Exception,), {'status_code': 429})('boom'), True),
    ])
    def test_is_rate_limited(self, error, expected):
        assert is_rate_limited(error) is expected
