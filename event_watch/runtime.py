"""
Runtime — the process-wide set of collaborators, built once and passed down.

One cache instance is shared by both scheduled jobs and the one-shot CLI
commands, so followings invalidation and verdict reuse work across them.
"""
import logging
import threading
from typing import Optional

from event_watch import config as settings
from event_watch.config import SchedulerConfig, load_scheduler_config
from event_watch.pipeline.detector import EventDetector
from event_watch.pipeline.followings import refresh_followings
from event_watch.scheduler import Scheduler
from event_watch.services import notifications

logger = logging.getLogger('event_watch.runtime')


class Runtime:

    def __init__(self, store, source, classifier, cache, status=None,
                 main_account: Optional[str] = None,
                 config_path: Optional[str] = None,
                 pid_file: Optional[str] = None):
        self.store = store
        self.source = source
        self.classifier = classifier
        self.cache = cache
        self.status = status
        self.main_account = main_account
        self.config_path = config_path or settings.SCHEDULER_CONFIG_PATH
        self.pid_file = pid_file or settings.SCHEDULER_PID_FILE

    def load_config(self) -> SchedulerConfig:
        return load_scheduler_config(self.config_path)

    def detector(self, cfg: SchedulerConfig, stop_event: Optional[threading.Event] = None,
                 notify: bool = True) -> EventDetector:
        stop_event = stop_event or threading.Event()
        return EventDetector(
            self.store, self.source, self.classifier, self.cache, cfg,
            main_account=self.main_account,
            sleep=stop_event.wait,
            cancel_event=stop_event,
            notifier=notifications.notify_detection_complete if notify else None,
        )

    def run_detection(self, cfg: SchedulerConfig, stop_event: Optional[threading.Event] = None):
        try:
            return self.detector(cfg, stop_event).run()
        except Exception as e:
            notifications.notify_detection_failed(e)
            raise

    def run_followings(self, cfg: SchedulerConfig, stop_event: Optional[threading.Event] = None):
        stop_event = stop_event or threading.Event()
        return refresh_followings(
            self.main_account, self.source, self.store, self.cache, cfg,
            sleep=stop_event.wait,
        )

    def scheduler(self) -> Scheduler:
        return Scheduler(
            self.run_detection,
            self.run_followings,
            self.load_config,
            pid_file=self.pid_file,
            status=self.status,
            cache_stats=lambda: self.cache.stats().to_dict(),
        )
