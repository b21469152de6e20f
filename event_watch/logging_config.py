"""
Structured logging configuration.

The scheduler runs two jobs on separate threads, so every line carries the
thread name and, inside a job, the job id set by job_context(). Output goes to
stderr; with LOG_FILE set (or log_file passed) a size-rotated file is added for
detached runs.
"""
import contextvars
import json
import logging
import logging.handlers
import os
import sys
from contextlib import contextmanager
from datetime import datetime, timezone

_current_job = contextvars.ContextVar('event_watch_job', default='-')

LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5

TEXT_FORMAT = '[%(asctime)s] %(levelname)s %(name)s (%(threadName)s/%(job)s) %(message)s'

# Third-party loggers that are noisy at INFO
_NOISY_LOGGERS = [
    'urllib3',
    'openai',
    'httpcore',
    'httpx',
    'apify_client',
    'apscheduler',
]


@contextmanager
def job_context(job: str):
    """Tag log records emitted inside the block (same thread) with job."""
    token = _current_job.set(job)
    try:
        yield
    finally:
        _current_job.reset(token)


class JobContextFilter(logging.Filter):
    def filter(self, record):
        record.job = _current_job.get()
        return True


class JSONFormatter(logging.Formatter):
    """Single-line JSON log formatter for log aggregators."""

    def format(self, record):
        entry = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'thread': record.threadName,
            'job': getattr(record, 'job', '-'),
            'message': record.getMessage(),
        }
        if record.exc_info and record.exc_info[0] is not None:
            entry['exception'] = self.formatException(record.exc_info)
        return json.dumps(entry)


def _formatter(log_format):
    if log_format == 'json':
        return JSONFormatter()
    return logging.Formatter(TEXT_FORMAT, datefmt='%Y-%m-%d %H:%M:%S')


def configure_logging(level_name=None, log_format=None, log_file=None):
    """
    Set up the root logger. Arguments win over environment variables.

    Environment variables:
        LOG_LEVEL  - Python log level name (default: INFO)
        LOG_FORMAT - "text" (default) or "json"
        LOG_FILE   - optional path of a rotating log file
    """
    level_name = (level_name or os.getenv('LOG_LEVEL', 'INFO')).upper()
    level = getattr(logging, level_name, logging.INFO)
    log_format = (log_format or os.getenv('LOG_FORMAT', 'text')).lower()
    log_file = log_file or os.getenv('LOG_FILE')

    root = logging.getLogger()
    root.setLevel(level)
    for old in root.handlers[:]:
        root.removeHandler(old)
        if isinstance(old, logging.FileHandler):
            old.close()

    handlers = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.handlers.RotatingFileHandler(
            log_file, maxBytes=LOG_FILE_MAX_BYTES, backupCount=LOG_FILE_BACKUPS, encoding='utf-8',
        ))

    job_filter = JobContextFilter()
    for handler in handlers:
        handler.setLevel(level)
        handler.addFilter(job_filter)
        handler.setFormatter(_formatter(log_format))
        root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
