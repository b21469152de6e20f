"""
Scheduler — runs the two recurring jobs for the lifetime of the process.

  followings refresh  jittered interval: run, wait uniform(min, max) hours,
                      repeat. Own loop thread, runs once at startup.
  event detection     fixed cadence aligned to local midnight (2h → even
                      hours). APScheduler job, plus one run at startup.

The jobs never block each other. Both reload the YAML config before each
run; an invalid edit is logged and the previous config stays in force.

Lifecycle: a PID file marks the running instance. The first SIGINT/SIGTERM
asks for an orderly stop (the detector finishes its current post); a second
one exits immediately.
"""
import logging
import math
import os
import random
import signal
import threading
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, EVENT_JOB_MISSED
from apscheduler.schedulers import SchedulerNotRunningError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from event_watch import pidfile
from event_watch.config import SchedulerConfig, SCHEDULER_PID_FILE
from event_watch.errors import ConfigurationInvalid
from event_watch.logging_config import job_context

logger = logging.getLogger('scheduler')

DETECTION_JOB = 'event_detection'
FOLLOWINGS_JOB = 'followings_refresh'
HEARTBEAT_JOB = 'heartbeat'
HEARTBEAT_MINUTES = 5


def next_jittered_delay(min_hours: float, max_hours: float, rng=random) -> float:
    """Seconds until the next followings refresh, uniform in [min_hours, max_hours]."""
    return rng.uniform(min_hours, max_hours) * 3600


def _local_midnight(now: Optional[datetime] = None) -> datetime:
    now = (now or datetime.now()).astimezone()
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def cadence_trigger(hours: float, now: Optional[datetime] = None) -> IntervalTrigger:
    """Fires every `hours`, counted from local midnight."""
    return IntervalTrigger(seconds=int(hours * 3600), start_date=_local_midnight(now))


def next_cadence_run(hours: float, now: Optional[datetime] = None) -> datetime:
    """Next boundary of the cadence after now (strictly later)."""
    now = (now or datetime.now()).astimezone()
    midnight = _local_midnight(now)
    period = hours * 3600
    slots = math.floor((now - midnight).total_seconds() / period) + 1
    return midnight + timedelta(seconds=slots * period)


class Scheduler:
    """
    Usage:
        scheduler = Scheduler(run_detection, run_followings, load_config, status=status_store)
        scheduler.run_forever()  # blocks until SIGINT/SIGTERM

    run_detection(config, stop_event) -> RunStats
    run_followings(config, stop_event) -> FollowingsResult
    """

    def __init__(self, run_detection: Callable, run_followings: Callable,
                 load_config: Callable[[], SchedulerConfig],
                 pid_file: str = SCHEDULER_PID_FILE, status=None,
                 rng: Optional[random.Random] = None,
                 background: Optional[BackgroundScheduler] = None,
                 cache_stats: Optional[Callable[[], dict]] = None):
        self._run_detection = run_detection
        self._run_followings = run_followings
        self._load_config = load_config
        self.pid_file = pid_file
        self.status = status
        self._cache_stats = cache_stats
        self._rng = rng or random.Random()
        self._scheduler = background or BackgroundScheduler(
            job_defaults={'coalesce': True, 'max_instances': 1, 'misfire_grace_time': 300},
        )
        self._stop = threading.Event()
        self._config = None
        self._config_lock = threading.Lock()
        self._detection_lock = threading.Lock()
        self._followings_thread = None
        self._followings_next_run = None
        self._signals_received = 0
        self._started = False
        self.pid = None

    # ── Config ────────────────────────────────────────────────────────

    @property
    def config(self) -> Optional[SchedulerConfig]:
        return self._config

    def reload_config(self) -> SchedulerConfig:
        """
        Reload the config for the next run.

        Before the first successful load an invalid config raises; afterwards
        the previous config is kept.
        """
        try:
            cfg = self._load_config()
        except ConfigurationInvalid as e:
            if self._config is None:
                raise
            logger.error("Config reload failed, keeping previous settings: %s", e)
            return self._config

        with self._config_lock:
            previous, self._config = self._config, cfg

        if (self._started and not self._stop.is_set() and previous is not None
                and previous.event_detector_interval_hours != cfg.event_detector_interval_hours):
            logger.info("Detection cadence changed %.2fh → %.2fh, rescheduling",
                        previous.event_detector_interval_hours, cfg.event_detector_interval_hours)
            self._scheduler.reschedule_job(DETECTION_JOB, trigger=cadence_trigger(cfg.event_detector_interval_hours))
        return cfg

    # ── Lifecycle ─────────────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._started

    @property
    def stop_event(self) -> threading.Event:
        return self._stop

    def start(self) -> None:
        if self._started:
            return
        cfg = self.reload_config()
        self.pid = pidfile.acquire(self.pid_file)
        self._stop.clear()
        self._signals_received = 0

        now = datetime.now().astimezone()
        self._scheduler.add_listener(self._on_job_event, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR | EVENT_JOB_MISSED)
        self._scheduler.add_job(
            func=self._detection_job,
            trigger=cadence_trigger(cfg.event_detector_interval_hours, now),
            id=DETECTION_JOB,
            name='Event detection',
            replace_existing=True,
        )
        self._scheduler.add_job(
            func=self._detection_job,
            trigger='date',
            run_date=now,
            id=f'{DETECTION_JOB}_startup',
            name='Event detection (startup run)',
            replace_existing=True,
        )
        self._scheduler.add_job(
            func=self._heartbeat,
            trigger=IntervalTrigger(minutes=HEARTBEAT_MINUTES),
            id=HEARTBEAT_JOB,
            name='Status heartbeat',
            next_run_time=now,
            replace_existing=True,
        )
        self._scheduler.start()

        self._followings_thread = threading.Thread(
            target=self._followings_loop, name='followings-refresh', daemon=True,
        )
        self._followings_thread.start()
        self._started = True

        logger.info("Scheduler started (pid %d): detection every %.2fh, followings every %.1f-%.1fh",
                    self.pid, cfg.event_detector_interval_hours,
                    cfg.followings_min_interval_hours, cfg.followings_max_interval_hours)
        self._publish_next_runs()

    def stop(self, wait: bool = True, timeout: float = 30.0) -> None:
        """Orderly shutdown: signal the jobs, wait for them, drop the PID file."""
        if not self._started:
            return
        logger.info("Stopping scheduler...")
        self._stop.set()
        # shutdown(wait=True) joins the job threads while holding the job store
        # lock, which any finishing job's listener needs; wait on our own lock.
        try:
            self._scheduler.shutdown(wait=False)
        except SchedulerNotRunningError:
            pass
        if wait:
            if self._detection_lock.acquire(timeout=timeout):
                self._detection_lock.release()
            else:
                logger.warning("Detection run still running at shutdown")
        if self._followings_thread is not None:
            self._followings_thread.join(timeout if wait else 0)
            if self._followings_thread.is_alive():
                logger.warning("Followings refresh still running at shutdown")
            self._followings_thread = None
        self._started = False
        pidfile.release(self.pid_file)
        if self.status is not None:
            self.status.clear()
        logger.info("Scheduler stopped")

    def run_forever(self, poll_seconds: float = 1.0) -> None:
        """Start, then block the calling (main) thread until a stop is requested."""
        self.install_signal_handlers()
        self.start()
        try:
            while not self._stop.wait(poll_seconds):
                pass
        finally:
            self.stop()

    def request_stop(self) -> None:
        self._stop.set()

    # ── Signals ───────────────────────────────────────────────────────

    def install_signal_handlers(self) -> None:
        for sig in (signal.SIGINT, signal.SIGTERM):
            signal.signal(sig, self.handle_signal)

    def handle_signal(self, signum, frame=None) -> None:
        self._signals_received += 1
        name = signal.Signals(signum).name
        if self._signals_received == 1:
            logger.info("Received %s, finishing the current post then exiting (repeat to force)", name)
            self._stop.set()
            return
        logger.warning("Received %s again, exiting immediately", name)
        pidfile.release(self.pid_file)
        os._exit(1)

    # ── Jobs ──────────────────────────────────────────────────────────

    def _detection_job(self) -> None:
        if not self._detection_lock.acquire(blocking=False):
            logger.warning("Previous detection run still in progress, skipping this slot")
            return
        try:
            if self._stop.is_set():
                return
            cfg = self.reload_config()
            with job_context(DETECTION_JOB):
                logger.info("Event detection run starting")
                stats = self._run_detection(cfg, self._stop)
            if self.status is not None and stats is not None:
                self.status.record_run(DETECTION_JOB, stats.to_dict())
            self._publish_cache_stats()
        except Exception as e:
            logger.error("Event detection run failed: %s", e, exc_info=True)
            if self.status is not None:
                self.status.record_run(DETECTION_JOB, {'error': str(e), 'at': datetime.now().astimezone().isoformat()})
        finally:
            self._detection_lock.release()

    def _followings_once(self) -> None:
        try:
            cfg = self.reload_config()
            with job_context(FOLLOWINGS_JOB):
                result = self._run_followings(cfg, self._stop)
            if self.status is not None and result is not None:
                self.status.record_run(FOLLOWINGS_JOB, result.to_dict())
        except Exception as e:
            logger.error("Followings refresh failed: %s", e, exc_info=True)
            if self.status is not None:
                self.status.record_run(FOLLOWINGS_JOB, {'error': str(e), 'at': datetime.now().astimezone().isoformat()})

    def _followings_loop(self) -> None:
        while not self._stop.is_set():
            self._followings_next_run = None
            self._followings_once()
            if self._stop.is_set():
                break

            cfg = self._config
            delay = next_jittered_delay(cfg.followings_min_interval_hours,
                                        cfg.followings_max_interval_hours, self._rng)
            self._followings_next_run = datetime.now().astimezone() + timedelta(seconds=delay)
            logger.info("Next followings refresh in %.2fh at %s",
                        delay / 3600, self._followings_next_run.strftime('%Y-%m-%d %H:%M'))
            self._publish_next_runs()
            self._stop.wait(delay)

    def _heartbeat(self) -> None:
        if self.status is None or self._stop.is_set():
            return
        self.status.heartbeat(self.pid or os.getpid())
        self._publish_next_runs()
        self._publish_cache_stats()

    # ── Introspection ─────────────────────────────────────────────────

    def _on_job_event(self, event) -> None:
        if event.code == EVENT_JOB_MISSED:
            logger.warning("Job %s missed its run time at %s", event.job_id, event.scheduled_run_time)
        elif event.code == EVENT_JOB_ERROR:
            logger.error("Job %s raised: %s", event.job_id, event.exception)
        if event.job_id != HEARTBEAT_JOB:
            self._publish_next_runs()

    def next_runs(self) -> Dict[str, Optional[datetime]]:
        """
        Next fire times, derived from the config rather than read back from
        APScheduler so this never waits on the job store lock.
        """
        detection = None
        cfg = self._config
        if self._started and cfg is not None:
            detection = next_cadence_run(cfg.event_detector_interval_hours)
        return {
            DETECTION_JOB: detection,
            FOLLOWINGS_JOB: self._followings_next_run,
        }

    def _publish_cache_stats(self) -> None:
        if self.status is None or self._cache_stats is None:
            return
        try:
            self.status.set_cache_stats(self._cache_stats())
        except Exception as e:
            logger.debug("Cache stats not published: %s", e)

    def _publish_next_runs(self) -> None:
        if self.status is None or self._stop.is_set():
            return
        for job, when in self.next_runs().items():
            self.status.set_next_run(job, when)
