"""
Centralized configuration — env vars, cache TTLs, and the scheduler tunables.

Environment constants are read once at import. Scheduler tunables live in a
YAML file (SCHEDULER_CONFIG_PATH) so they can be edited while the scheduler is
running; every job run reloads them.
"""
import logging
import os
from dataclasses import dataclass, asdict, fields
from typing import List, Optional

import yaml

from event_watch.errors import ConfigurationInvalid

logger = logging.getLogger('event_watch.config')


# ── Logging ──────────────────────────────────────────────────────────────────
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
LOG_FORMAT = os.getenv('LOG_FORMAT', 'text')
LOG_FILE = os.getenv('LOG_FILE')  # e.g. scheduler.log when running detached

# ── Redis ─────────────────────────────────────────────────────────────────────
REDIS_URL = os.getenv('REDIS_URL', 'redis://localhost:6379/0')

# ── PostgreSQL ────────────────────────────────────────────────────────────────
DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///local.db')

# ── OpenAI ────────────────────────────────────────────────────────────────────
OPENAI_API_KEY = os.getenv('OPENAI_API_KEY')
OPENAI_MODEL = os.getenv('OPENAI_MODEL', 'gpt-4o-mini')

# ── Apify (Instagram scraping) ───────────────────────────────────────────────
APIFY_API_TOKEN = os.getenv('APIFY_API_TOKEN')
APIFY_POSTS_ACTOR = os.getenv('APIFY_POSTS_ACTOR', 'apify~instagram-post-scraper')
APIFY_FOLLOWINGS_ACTOR = os.getenv('APIFY_FOLLOWINGS_ACTOR', 'apify~instagram-following-scraper')
APIFY_TIMEOUT_SECS = int(os.getenv('APIFY_TIMEOUT_SECS', '300'))

# ── Instagram ────────────────────────────────────────────────────────────────
# Main account whose followings make up the watch list.
INSTAGRAM_ACCOUNT = os.getenv('INSTAGRAM_ACCOUNT') or os.getenv('INSTAGRAM_USERNAME')

# ── Slack notifications ──────────────────────────────────────────────────────
SLACK_WEBHOOK_URL = os.getenv('SLACK_WEBHOOK_URL')

# ── Scheduler process ────────────────────────────────────────────────────────
SCHEDULER_CONFIG_PATH = os.getenv('SCHEDULER_CONFIG_PATH', os.path.join('config', 'scheduler.yaml'))
SCHEDULER_PID_FILE = os.getenv('SCHEDULER_PID_FILE', 'scheduler.pid')
SCHEDULER_STOP_TIMEOUT = 10  # seconds between SIGTERM and SIGKILL

# ── Cache TTLs (seconds) ─────────────────────────────────────────────────────
CACHE_DEFAULT_TTL = 115 * 60
CACHE_CHECK_PERIOD = 2 * 60 * 60
FOLLOWINGS_CACHE_TTL = 4 * 60 * 60 - 5 * 60
ANALYSIS_CACHE_TTL = 7 * 24 * 60 * 60
STATS_CACHE_TTL = 2 * 60 * 60 - 5 * 60
HISTORY_CACHE_TTL = 4 * 60 * 60 - 5 * 60

# ── Retry ────────────────────────────────────────────────────────────────────
RETRY_MAX_DELAY = 60.0
RATE_LIMIT_EXTRA_DELAY = 15.0


@dataclass
class SchedulerConfig:
    """Tunables for both scheduled jobs. Units are in the field names."""
    followings_min_interval_hours: float = 3.5
    followings_max_interval_hours: float = 4.5
    event_detector_interval_hours: float = 2.0
    posts_per_account: int = 5
    min_confidence_threshold: float = 90.0
    max_retries: int = 3
    retry_delay_seconds: float = 5.0
    max_accounts: int = 0  # 0 = every followed account
    account_delay_min_seconds: float = 2.0
    account_delay_max_seconds: float = 5.0
    post_delay_seconds: float = 0.5

    def validate(self) -> 'SchedulerConfig':
        """Raise ConfigurationInvalid listing every violated rule."""
        errors = validation_errors(self)
        if errors:
            raise ConfigurationInvalid(errors)
        return self

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> 'SchedulerConfig':
        """Build from a (possibly partial) mapping. Unknown keys are ignored."""
        data = data or {}
        if not isinstance(data, dict):
            raise ConfigurationInvalid('config file must contain a mapping')

        known = {f.name: f for f in fields(cls)}
        unknown = sorted(set(data) - set(known))
        if unknown:
            logger.warning("Ignoring unknown config keys: %s", ', '.join(unknown))

        kwargs = {}
        errors = []
        for name, value in data.items():
            if name not in known:
                continue
            try:
                kwargs[name] = _coerce(known[name].type, value)
            except (TypeError, ValueError):
                errors.append(f'{name} must be a number (got {value!r})')
        if errors:
            raise ConfigurationInvalid(errors)
        return cls(**kwargs)


def _coerce(type_, value):
    # dataclass field types are strings under some interpreters
    type_name = type_ if isinstance(type_, str) else type_.__name__
    if isinstance(value, bool):
        raise TypeError('booleans are not numbers')
    if type_name == 'int':
        as_float = float(value)
        if not as_float.is_integer():
            raise ValueError('not an integer')
        return int(as_float)
    return float(value)


def validation_errors(cfg: SchedulerConfig) -> List[str]:
    """Return human-readable rule violations (empty list = valid)."""
    errors = []
    if cfg.followings_min_interval_hours >= cfg.followings_max_interval_hours:
        errors.append('followings_min_interval_hours must be less than followings_max_interval_hours')
    if cfg.followings_min_interval_hours < 1:
        errors.append('followings_min_interval_hours must be at least 1 hour')
    if cfg.event_detector_interval_hours < 0.5:
        errors.append('event_detector_interval_hours must be at least 0.5 hours')
    if not 1 <= cfg.posts_per_account <= 100:
        errors.append('posts_per_account must be between 1 and 100')
    if not 50 <= cfg.min_confidence_threshold <= 100:
        errors.append('min_confidence_threshold must be between 50 and 100')
    if not 1 <= cfg.max_retries <= 100:
        errors.append('max_retries must be between 1 and 100')
    if cfg.retry_delay_seconds < 1:
        errors.append('retry_delay_seconds must be at least 1 second')
    if cfg.max_accounts < 0:
        errors.append('max_accounts must not be negative')
    if cfg.account_delay_min_seconds < 0 or cfg.account_delay_min_seconds > cfg.account_delay_max_seconds:
        errors.append('account delay bounds must satisfy 0 <= min <= max')
    if cfg.post_delay_seconds < 0:
        errors.append('post_delay_seconds must not be negative')
    return errors


def load_scheduler_config(path: Optional[str] = None) -> SchedulerConfig:
    """
    Load and validate the scheduler config.

    A missing file means defaults (logged). Unreadable YAML or a rule violation
    raises ConfigurationInvalid; callers decide whether that is fatal.
    """
    path = path or SCHEDULER_CONFIG_PATH
    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        logger.warning("Scheduler config %s not found, using defaults", path)
        return SchedulerConfig()
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationInvalid(f'cannot read {path}: {e}') from e

    return SchedulerConfig.from_dict(data).validate()


def save_scheduler_config(cfg: SchedulerConfig, path: Optional[str] = None) -> str:
    """Validate and write the config back to YAML. Returns the path written."""
    cfg.validate()
    path = path or SCHEDULER_CONFIG_PATH
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(path, 'w') as f:
        yaml.safe_dump(cfg.to_dict(), f, default_flow_style=False, sort_keys=False)
    logger.info("Scheduler config saved to %s", path)
    return path


def update_scheduler_config(changes: dict, path: Optional[str] = None) -> SchedulerConfig:
    """Apply a partial update on top of the current file and save it."""
    current = load_scheduler_config(path).to_dict()
    current.update(changes)
    cfg = SchedulerConfig.from_dict(current).validate()
    save_scheduler_config(cfg, path)
    return cfg


def require_credentials() -> None:
    """Fail fast when the scheduler cannot possibly do useful work."""
    missing = []
    if not OPENAI_API_KEY:
        missing.append('OPENAI_API_KEY is not set')
    if not APIFY_API_TOKEN:
        missing.append('APIFY_API_TOKEN is not set')
    if not INSTAGRAM_ACCOUNT:
        missing.append('INSTAGRAM_ACCOUNT (or INSTAGRAM_USERNAME) is not set')
    if missing:
        raise ConfigurationInvalid(missing)
