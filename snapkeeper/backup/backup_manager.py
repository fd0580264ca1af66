"""Backup orchestration.

Copies the live database into the snapshot folder, records the time of the
last successful backup and enforces retention. Intended to be called from
the scheduler, the HTTP API and the launcher's pre-update hook.
"""

import logging
import os
import shutil
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from snapkeeper.backup.backup_config import MAX_BACKUPS
from snapkeeper.backup.recovery_manager import RecoveryManager
from snapkeeper.backup.snapshot_namer import SnapshotPurpose, name_for
from snapkeeper.backup.snapshot_store import Snapshot, SnapshotStore
from snapkeeper.database.settings_store import SettingsStore

logger = logging.getLogger(__name__)


class BackupReason(Enum):
    MANUAL = "manual"
    SCHEDULED = "scheduled"
    PRE_UPDATE = "pre-update"


@dataclass
class BackupResult:
    success: bool
    path: str | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        result = {"success": self.success}
        if self.path is not None:
            result["path"] = self.path
        if self.error is not None:
            result["error"] = self.error
        return result


class BackupManager:
    """High-level backup orchestrator.

    Usage::

        settings = SettingsStore("/data/app.db")
        mgr = BackupManager(db_path="/data/app.db", settings=settings)
        mgr.create_backup(BackupReason.MANUAL)
        mgr.recovery.restore_backup(mgr.list_backups()[0].path)
    """

    def __init__(
        self,
        db_path: str,
        settings: SettingsStore,
        default_folder: str = None,
        max_backups: int = MAX_BACKUPS,
    ):
        self.db_path = str(db_path)
        self.settings = settings
        self.max_backups = max_backups
        self.store = SnapshotStore(settings, default_folder=default_folder)
        self.recovery = RecoveryManager(self.store, self.db_path)

    def get_backup_folder(self) -> str:
        return self.store.resolve_folder()

    def create_backup(self, reason: BackupReason | str) -> BackupResult:
        """Snapshot the live database.

        Retention runs only after a successful copy and never affects the
        returned result.
        """
        reason = BackupReason(reason)
        try:
            logger.info("Creating backup (reason: %s)", reason.value)
            folder = self.store.ensure_folder()
            now = datetime.now(timezone.utc)
            backup_path = os.path.join(
                folder, name_for(now.astimezone(), SnapshotPurpose.REGULAR)
            )

            self._checkpoint_live_db()
            shutil.copy2(self.db_path, backup_path)
            self.settings.set_last_backup_time(now)
        except Exception as exc:
            logger.error("Backup failed: %s", exc)
            return BackupResult(success=False, error=str(exc))

        logger.info("Backup created: %s", backup_path)
        self.cleanup_old_backups(self.max_backups)
        return BackupResult(success=True, path=backup_path)

    def export_backup_to_path(self, destination_path: str) -> BackupResult:
        """Copy the live database (not a snapshot) to ``destination_path``."""
        try:
            logger.info("Exporting backup to: %s", destination_path)
            self._checkpoint_live_db()
            shutil.copy2(self.db_path, destination_path)
        except Exception as exc:
            logger.error("Export backup failed: %s", exc)
            return BackupResult(success=False, error=str(exc))

        logger.info("Backup exported successfully: %s", destination_path)
        return BackupResult(success=True, path=str(destination_path))

    def list_backups(self) -> list[Snapshot]:
        return self.store.list_snapshots()

    def delete_backup(self, filename: str) -> bool:
        return self.store.delete(filename)

    def cleanup_old_backups(self, max_to_keep: int = MAX_BACKUPS):
        self.store.enforce_retention(max_to_keep)

    def _checkpoint_live_db(self):
        # Settings kept inside the live file may still sit in its WAL
        if self.settings.is_stored_in(self.db_path):
            self.settings.checkpoint()
