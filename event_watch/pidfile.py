"""
PID file helpers — the scheduler's single-instance marker.

External tooling (`event-watch status`, `event-watch stop`) reads the file to
find the scheduler process.
"""
import errno
import logging
import os
from typing import Optional

from event_watch.errors import SchedulerAlreadyRunning

logger = logging.getLogger('event_watch.pidfile')


def read_pid(path: str) -> Optional[int]:
    try:
        with open(path, 'r') as f:
            return int(f.read().strip())
    except FileNotFoundError:
        return None
    except (OSError, ValueError):
        logger.warning("Unreadable PID file %s", path)
        return None


def pid_alive(pid: Optional[int]) -> bool:
    if not pid or pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except OSError as e:
        # EPERM: the process exists but belongs to someone else
        return e.errno == errno.EPERM
    return True


def acquire(path: str) -> int:
    """Write our PID to path. Raises SchedulerAlreadyRunning if a live PID is there."""
    existing = read_pid(path)
    if existing and existing != os.getpid() and pid_alive(existing):
        raise SchedulerAlreadyRunning(existing, path)
    if existing:
        logger.warning("Replacing stale PID file %s (pid %d)", path, existing)

    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    pid = os.getpid()
    with open(path, 'w') as f:
        f.write(str(pid))
    return pid


def release(path: str) -> None:
    """Remove the PID file if it still names this process."""
    if read_pid(path) not in (None, os.getpid()):
        logger.warning("PID file %s belongs to another process, leaving it", path)
        return
    try:
        os.remove(path)
    except FileNotFoundError:
        pass


def terminate(path: str, timeout: float = 10.0, poll: float = 0.5, sleep=None) -> str:
    """
    Stop the process named in the PID file: SIGTERM, wait, then SIGKILL.

    Returns 'not_running', 'stopped' or 'killed'. The PID file is removed in
    every case.
    """
    import signal
    import time

    sleep = sleep or time.sleep
    pid = read_pid(path)
    if not pid_alive(pid):
        _remove(path)
        return 'not_running'

    os.kill(pid, signal.SIGTERM)
    waited = 0.0
    while waited < timeout:
        sleep(poll)
        waited += poll
        if not pid_alive(pid):
            _remove(path)
            return 'stopped'

    logger.warning("Process %d ignored SIGTERM for %.0fs, killing it", pid, timeout)
    os.kill(pid, signal.SIGKILL)
    _remove(path)
    return 'killed'


def _remove(path):
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
