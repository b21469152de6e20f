"""Tests for event_watch.pidfile — single-instance marker and stop helper."""
import os
import signal
from unittest.mock import patch

import pytest

from event_watch import pidfile
from event_watch.errors import SchedulerAlreadyRunning

DEAD_PID = 99999999


class TestAcquireRelease:

    def test_acquire_writes_our_pid(self, tmp_path):
        path = str(tmp_path / 'scheduler.pid')
        assert pidfile.acquire(path) == os.getpid()
        assert pidfile.read_pid(path) == os.getpid()

    def test_live_pid_blocks_second_instance(self, tmp_path):
        path = tmp_path / 'scheduler.pid'
        path.write_text('12345')
        with patch('event_watch.pidfile.pid_alive', return_value=True):
            with pytest.raises(SchedulerAlreadyRunning) as exc_info:
                pidfile.acquire(str(path))
        assert exc_info.value.pid == 12345

    def test_stale_pid_replaced(self, tmp_path):
        path = tmp_path / 'scheduler.pid'
        path.write_text(str(DEAD_PID))
        assert pidfile.acquire(str(path)) == os.getpid()

    def test_release_removes_own_file(self, tmp_path):
        path = str(tmp_path / 'scheduler.pid')
        pidfile.acquire(path)
        pidfile.release(path)
        assert not os.path.exists(path)

    def test_release_leaves_foreign_file(self, tmp_path):
        path = tmp_path / 'scheduler.pid'
        path.write_text('12345')
        pidfile.release(str(path))
        assert path.exists()

    def test_garbage_pid_file(self, tmp_path):
        path = tmp_path / 'scheduler.pid'
        path.write_text('not-a-pid')
        assert pidfile.read_pid(str(path)) is None


class TestPidAlive:

    def test_self_is_alive(self):
        assert pidfile.pid_alive(os.getpid()) is True

    @pytest.mark.parametrize('pid', [None, 0, -1, DEAD_PID])
    def test_dead_or_invalid(self, pid):
        assert pidfile.pid_alive(pid) is False


class TestTerminate:

    def test_not_running_cleans_up(self, tmp_path):
        path = tmp_path / 'scheduler.pid'
        path.write_text(str(DEAD_PID))
        assert pidfile.terminate(str(path)) == 'not_running'
        assert not path.exists()

    @patch('event_watch.pidfile.os.kill')
    @patch('event_watch.pidfile.pid_alive', side_effect=[True, True, False])
    def test_sigterm_then_exit(self, mock_alive, mock_kill, tmp_path):
        path = tmp_path / 'scheduler.pid'
        path.write_text('12345')
        assert pidfile.terminate(str(path), timeout=5, poll=1, sleep=lambda s: None) == 'stopped'
        mock_kill.assert_called_once_with(12345, signal.SIGTERM)
        assert not path.exists()

    @patch('event_watch.pidfile.os.kill')
    @patch('event_watch.pidfile.pid_alive', return_value=True)
    def test_sigkill_after_timeout(self, mock_alive, mock_kill, tmp_path):
        path = tmp_path / 'scheduler.pid'
        path.write_text('12345')
        sleeps = []
        assert pidfile.terminate(str(path), timeout=3, poll=1, sleep=sleeps.append) == 'killed'
        assert len(sleeps) == 3
        assert mock_kill.call_args_list[-1].args == (12345, signal.SIGKILL)
        assert not path.exists()
