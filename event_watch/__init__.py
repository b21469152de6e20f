"""
Instagram event watcher.

create_runtime() wires the real collaborators (Postgres, Redis, OpenAI,
Apify) into a Runtime. Tests build Runtime directly with fakes.
"""


def create_runtime(config_path=None, pid_file=None):
    """Configure logging and build the production Runtime."""
    from event_watch import config
    from event_watch.logging_config import configure_logging

    configure_logging(config.LOG_LEVEL, config.LOG_FORMAT, config.LOG_FILE)

    # Import models so Base.metadata knows about them.
    # Schema is managed by Alembic, no create_all() here.
    import importlib
    importlib.import_module('event_watch.models.watched_account')
    importlib.import_module('event_watch.models.history_sample')
    importlib.import_module('event_watch.models.instagram_event')

    from event_watch.extensions import redis_client, openai_client, apify_client
    from event_watch.runtime import Runtime
    from event_watch.services.cache import TTLCache
    from event_watch.services.instagram import ApifyInstagramSource
    from event_watch.services.openai_client import OpenAIEventClassifier
    from event_watch.services.status import SchedulerStatusStore
    from event_watch.services.store import EventStore

    return Runtime(
        store=EventStore(),
        source=ApifyInstagramSource(apify_client),
        classifier=OpenAIEventClassifier(openai_client),
        cache=TTLCache(),
        status=SchedulerStatusStore(redis_client),
        main_account=config.INSTAGRAM_ACCOUNT,
        config_path=config_path,
        pid_file=pid_file,
    )
