"""Tests for the backup scheduler.

Timers are replaced by a recording fake so firings can be driven by hand;
one test at the end runs the real threading.Timer with a short interval.
"""

import sqlite3
import threading
import time
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest

from snapkeeper.backup.backup_config import BACKUP_INTERVAL_SECONDS
from snapkeeper.backup.backup_manager import BackupManager, BackupReason
from snapkeeper.backup.scheduler import BackupScheduler, compute_initial_delay
from snapkeeper.database.settings_store import SettingsStore


class FakeTimer:
    """Stand-in for threading.Timer that records instead of sleeping."""

    def __init__(self, interval, function, args=None, kwargs=None):
        self.interval = interval
        self.function = function
        self.args = args or ()
        self.kwargs = kwargs or {}
        self.started = False
        self.cancelled = False
        self.daemon = False
        self.name = None

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        self.function(*self.args, **self.kwargs)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def timers():
    created = []

    def factory(*args, **kwargs):
        timer = FakeTimer(*args, **kwargs)
        created.append(timer)
        return timer

    with patch("snapkeeper.backup.scheduler.threading.Timer", side_effect=factory):
        yield created


@pytest.fixture
def settings(tmp_path):
    s = SettingsStore(str(tmp_path / "settings.db"))
    yield s
    s.close()


@pytest.fixture
def backup_mgr():
    return MagicMock(spec=BackupManager)


@pytest.fixture
def scheduler(settings, backup_mgr):
    sched = BackupScheduler(settings=settings, backup_manager=backup_mgr)
    yield sched
    sched.stop()


def active(timers):
    return [t for t in timers if t.started and not t.cancelled]


# ---------------------------------------------------------------------------
# Initial delay
# ---------------------------------------------------------------------------

class TestInitialDelay:
    NOW = datetime(2024, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

    def test_never_backed_up(self):
        assert compute_initial_delay(None, self.NOW) == 0

    def test_overdue_catches_up(self):
        last = self.NOW - timedelta(hours=5)
        assert compute_initial_delay(last, self.NOW) == 0

    def test_exactly_one_interval(self):
        last = self.NOW - timedelta(seconds=BACKUP_INTERVAL_SECONDS)
        assert compute_initial_delay(last, self.NOW) == 0

    def test_waits_out_remainder(self):
        last = self.NOW - timedelta(minutes=20)
        assert compute_initial_delay(last, self.NOW) == pytest.approx(40 * 60)

    def test_future_last_backup_clamped(self):
        last = self.NOW + timedelta(hours=3)
        assert compute_initial_delay(last, self.NOW) == BACKUP_INTERVAL_SECONDS

    def test_custom_interval(self):
        last = self.NOW - timedelta(seconds=30)
        assert compute_initial_delay(last, self.NOW, interval=100) == pytest.approx(70)


# ---------------------------------------------------------------------------
# start / stop / restart
# ---------------------------------------------------------------------------

class TestStart:
    def test_disabled_schedules_nothing(self, scheduler, settings, backup_mgr, timers):
        settings.set("backup_enabled", "false")
        scheduler.start()

        assert timers == []
        assert scheduler.is_running is False
        backup_mgr.create_backup.assert_not_called()

    def test_first_run_fires_immediately(self, scheduler, timers):
        scheduler.start()

        assert len(timers) == 1
        assert timers[0].interval == 0
        assert timers[0].started
        assert timers[0].daemon is True
        assert scheduler.is_running is True

    def test_overdue_fires_immediately(self, scheduler, settings, timers):
        settings.set_last_backup_time(datetime.now(timezone.utc) - timedelta(hours=3))
        scheduler.start()
        assert timers[0].interval == 0

    def test_recent_backup_waits(self, scheduler, settings, timers):
        settings.set_last_backup_time(datetime.now(timezone.utc) - timedelta(minutes=20))
        scheduler.start()
        assert timers[0].interval == pytest.approx(40 * 60, abs=5)

    def test_settings_failure_stays_stopped(self, scheduler, settings, timers):
        with patch.object(settings, "is_backup_enabled",
                          side_effect=sqlite3.OperationalError("disk I/O error")):
            scheduler.start()
        assert timers == []
        assert scheduler.is_running is False

    def test_start_twice_keeps_one_timer(self, scheduler, timers):
        scheduler.start()
        scheduler.start()

        assert len(timers) == 2
        assert timers[0].cancelled
        assert active(timers) == [timers[1]]


class TestStop:
    def test_stop_cancels(self, scheduler, timers):
        scheduler.start()
        scheduler.stop()

        assert timers[0].cancelled
        assert scheduler.is_running is False

    def test_stop_when_stopped_is_noop(self, scheduler):
        scheduler.stop()
        scheduler.stop()
        assert scheduler.is_running is False

    def test_stop_during_firing_prevents_rearm(self, scheduler, backup_mgr, timers):
        scheduler.start()
        backup_mgr.create_backup.side_effect = lambda reason: scheduler.stop()

        timers[0].fire()

        assert len(timers) == 1
        assert scheduler.is_running is False

    def test_expired_timer_after_stop_does_not_back_up(self, scheduler, backup_mgr, timers):
        # cancel() cannot stop a timer thread that already woke up
        scheduler.start()
        scheduler.stop()

        timers[0].fire()

        backup_mgr.create_backup.assert_not_called()
        assert len(timers) == 1
        assert scheduler.is_running is False

    def test_superseded_timer_after_restart_does_not_back_up(
        self, scheduler, backup_mgr, timers
    ):
        scheduler.start()
        scheduler.restart()

        timers[0].fire()

        backup_mgr.create_backup.assert_not_called()
        assert len(timers) == 2
        assert active(timers) == [timers[1]]


class TestRestart:
    def test_repeated_restarts_single_timer(self, scheduler, timers):
        for _ in range(5):
            scheduler.restart()

        assert len(timers) == 5
        assert len(active(timers)) == 1
        assert all(t.cancelled for t in timers[:-1])

    def test_restart_after_disable(self, scheduler, settings, timers):
        scheduler.start()
        settings.set("backup_enabled", "false")
        scheduler.restart()

        assert timers[0].cancelled
        assert len(timers) == 1
        assert scheduler.is_running is False

    def test_restart_picks_up_last_backup(self, scheduler, settings, timers):
        scheduler.start()
        settings.set_last_backup_time(datetime.now(timezone.utc) - timedelta(minutes=50))
        scheduler.restart()
        assert timers[-1].interval == pytest.approx(10 * 60, abs=5)


# ---------------------------------------------------------------------------
# Firing
# ---------------------------------------------------------------------------

class TestFiring:
    def test_fire_runs_scheduled_backup_and_rearms(self, scheduler, backup_mgr, timers):
        scheduler.start()
        timers[0].fire()

        backup_mgr.create_backup.assert_called_once_with(BackupReason.SCHEDULED)
        assert len(timers) == 2
        assert timers[1].interval == BACKUP_INTERVAL_SECONDS
        assert timers[1].started
        assert scheduler.is_running is True

    def test_repeating_firings(self, scheduler, backup_mgr, timers):
        scheduler.start()
        for i in range(3):
            timers[i].fire()

        assert backup_mgr.create_backup.call_count == 3
        assert len(timers) == 4

    def test_disabled_at_fire_time_skips_but_keeps_schedule(
        self, scheduler, settings, backup_mgr, timers
    ):
        scheduler.start()
        settings.set("backup_enabled", "false")
        timers[0].fire()

        backup_mgr.create_backup.assert_not_called()
        assert len(timers) == 2
        assert scheduler.is_running is True

    def test_reenabled_resumes(self, scheduler, settings, backup_mgr, timers):
        scheduler.start()
        settings.set("backup_enabled", "false")
        timers[0].fire()
        settings.set("backup_enabled", "true")
        timers[1].fire()

        backup_mgr.create_backup.assert_called_once_with(BackupReason.SCHEDULED)

    def test_error_does_not_stop_schedule(self, scheduler, backup_mgr, timers):
        backup_mgr.create_backup.side_effect = RuntimeError("boom")
        scheduler.start()
        timers[0].fire()

        assert len(timers) == 2
        assert timers[1].started

    def test_run_scheduled_backup_returns_result(self, scheduler, backup_mgr):
        backup_mgr.create_backup.return_value = "result"
        assert scheduler.run_scheduled_backup() == "result"


# ---------------------------------------------------------------------------
# Real timer
# ---------------------------------------------------------------------------

class TestRealTimer:
    def test_fires_repeatedly_until_stopped(self, settings, backup_mgr):
        fired = threading.Event()
        calls = []

        def record(reason):
            calls.append(reason)
            if len(calls) >= 2:
                fired.set()

        backup_mgr.create_backup.side_effect = record
        sched = BackupScheduler(settings=settings, backup_manager=backup_mgr, interval=0.05)
        sched.start()
        try:
            assert fired.wait(timeout=5)
        finally:
            sched.stop()

        time.sleep(0.2)
        settled = len(calls)
        time.sleep(0.3)
        assert len(calls) == settled
        assert all(r is BackupReason.SCHEDULED for r in calls)
