"""
Error taxonomy shared by collaborators, the pipeline and the scheduler.

Collaborator wrappers translate vendor exceptions (openai, apify-client,
SQLAlchemy) into these types so callers only ever branch on our own classes.
"""


class EventWatchError(Exception):
    """Base class for all event_watch errors."""


# ── Transient (retryable) ────────────────────────────────────────────────────

class TransientCollaboratorError(EventWatchError):
    """A collaborator call failed in a way that may succeed on retry."""


class SourceUnavailable(TransientCollaboratorError):
    """The item source (Instagram scraper) could not deliver posts."""


class ServiceUnavailable(TransientCollaboratorError):
    """The classification service could not produce a verdict."""


class RateLimited(TransientCollaboratorError):
    """A collaborator refused the call because of a quota."""
    def __init__(self, message='rate limit exceeded', retry_after=None):
        self.retry_after = retry_after
        super().__init__(message)


class MalformedResponse(TransientCollaboratorError):
    """The classification service answered with something we cannot parse."""
    def __init__(self, message, raw=None):
        self.raw = raw
        super().__init__(message)


class StoreUnavailable(TransientCollaboratorError):
    """The persistent store rejected or could not complete an operation."""


# ── Terminal ─────────────────────────────────────────────────────────────────

class RetryExhausted(EventWatchError):
    """Every attempt failed. Carries the last underlying error."""
    def __init__(self, last_error, attempts):
        self.last_error = last_error
        self.attempts = attempts
        super().__init__(f"Gave up after {attempts} attempt(s): {last_error}")


class DataUnavailable(EventWatchError):
    """Nothing to work on (no watched account, no followings, no posts)."""


class ConfigurationInvalid(EventWatchError):
    """Configuration is missing or violates a validation rule."""
    def __init__(self, errors):
        if isinstance(errors, str):
            errors = [errors]
        self.errors = list(errors)
        super().__init__('Invalid configuration: ' + '; '.join(self.errors))


class PersistenceConflict(EventWatchError):
    """A concurrent writer inserted the same row first. Absorbed by upserts."""


class SchedulerAlreadyRunning(EventWatchError):
    """Another scheduler process holds the PID file."""
    def __init__(self, pid, pid_file):
        self.pid = pid
        self.pid_file = pid_file
        super().__init__(f"Scheduler already running (pid {pid}, {pid_file})")
