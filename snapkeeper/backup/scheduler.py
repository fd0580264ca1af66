"""Recurring scheduled backups.

On start the scheduler works out how long until the next backup is due:

- never backed up, or the last backup is at least one interval old:
  back up immediately (catch-up after downtime)
- otherwise: wait out the rest of the current interval

After the first firing it re-arms itself every interval. ``backup_enabled``
is checked again at every firing, so disabling backups pauses the work
without cancelling the timer; only ``stop()`` cancels it.
"""

import logging
import threading
from datetime import datetime, timezone

from snapkeeper.backup.backup_config import BACKUP_INTERVAL_SECONDS
from snapkeeper.backup.backup_manager import BackupManager, BackupReason
from snapkeeper.database.settings_store import SettingsStore

logger = logging.getLogger(__name__)


def compute_initial_delay(
    last_backup: datetime | None,
    now: datetime,
    interval: float = BACKUP_INTERVAL_SECONDS,
) -> float:
    """Seconds to wait before the first scheduled backup.

    Both datetimes must be timezone-aware. A ``last_backup`` in the future
    waits at most one interval.
    """
    if last_backup is None:
        return 0.0
    elapsed = (now - last_backup).total_seconds()
    if elapsed >= interval:
        return 0.0
    return min(interval - elapsed, interval)


class BackupScheduler:
    """Owns the single backup timer for the process.

    One instance is created by the composition root and handed to whatever
    needs to start, stop or restart the schedule.
    """

    def __init__(
        self,
        settings: SettingsStore,
        backup_manager: BackupManager,
        interval: float = BACKUP_INTERVAL_SECONDS,
    ):
        self.settings = settings
        self.backup_manager = backup_manager
        self.interval = interval
        self._timer: threading.Timer | None = None
        self._generation = 0
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._timer is not None

    def start(self):
        """Arm the timer from the current settings. Stops any existing timer first."""
        self.stop()
        with self._lock:
            generation = self._generation

        try:
            if not self.settings.is_backup_enabled():
                logger.info("Backup scheduler not started: backups are disabled")
                return
            last_backup = self.settings.get_last_backup_time()
        except Exception:
            logger.exception("Backup scheduler not started: could not read settings")
            return

        delay = compute_initial_delay(
            last_backup, datetime.now(timezone.utc), self.interval
        )
        logger.info("Backup scheduler starting. First backup in %ds", round(delay))

        with self._lock:
            if generation != self._generation:
                # stop() was called while settings were being read
                return
            self._arm(delay, generation)

    def stop(self):
        """Cancel the timer if one is armed. Safe to call repeatedly."""
        with self._lock:
            self._generation += 1
            if self._timer is None:
                return
            self._timer.cancel()
            self._timer = None
        logger.info("Backup scheduler stopped")

    def restart(self):
        self.stop()
        self.start()

    def run_scheduled_backup(self):
        """Body of one firing: back up unless backups were disabled meanwhile."""
        if not self.settings.is_backup_enabled():
            logger.info("Skipping scheduled backup: backups are disabled")
            return None

        logger.info("Running scheduled backup")
        return self.backup_manager.create_backup(BackupReason.SCHEDULED)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _arm(self, delay: float, generation: int):
        # Caller holds self._lock
        timer = threading.Timer(delay, self._fire, args=(generation,))
        timer.daemon = True
        timer.name = "backup-scheduler"
        self._timer = timer
        timer.start()

    def _fire(self, generation: int):
        with self._lock:
            if generation != self._generation:
                # cancel() lost the race with a timer that had already expired
                return
        try:
            self.run_scheduled_backup()
        except Exception:
            logger.exception("Scheduled backup failed")

        with self._lock:
            if generation != self._generation:
                # stop() or restart() happened while this firing was running
                return
            self._arm(self.interval, generation)
