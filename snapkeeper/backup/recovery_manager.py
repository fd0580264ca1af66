"""Restoration of the live database from a snapshot.

Before the live database is overwritten, a ``data_pre_restore_*`` safety
snapshot of its current contents is written to the backup folder. If the
overwrite fails, nothing is rolled back automatically: the safety snapshot
stays on disk (and in the backup listing) for manual recovery.
"""

import logging
import os
import shutil
from dataclasses import dataclass
from datetime import datetime

from snapkeeper.backup.snapshot_namer import (
    SnapshotPurpose,
    is_valid_backup_filename,
    name_for,
)
from snapkeeper.backup.snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)

SOURCE_MISSING_ERROR = "Backup file does not exist"


@dataclass
class RestoreResult:
    success: bool
    path: str | None = None
    error: str | None = None
    safety_backup_path: str | None = None

    def to_dict(self) -> dict:
        result = {"success": self.success}
        if self.path is not None:
            result["path"] = self.path
        if self.error is not None:
            result["error"] = self.error
        if self.safety_backup_path is not None:
            result["safety_backup_path"] = self.safety_backup_path
        return result


class RecoveryManager:
    """Handles restoring the live database from the backup folder."""

    def __init__(self, store: SnapshotStore, db_path: str):
        self.store = store
        self.db_path = str(db_path)

    def restore_backup(self, source_path: str) -> RestoreResult:
        """Overwrite the live database with ``source_path``.

        The source may be any file, not only a snapshot from the backup
        folder. Callers are expected to reopen (or restart) whatever holds
        the database once this returns successfully.
        """
        logger.info("Restoring backup from: %s", source_path)

        try:
            os.stat(source_path)
        except OSError:
            return RestoreResult(success=False, error=SOURCE_MISSING_ERROR)

        safety_path = None
        try:
            folder = self.store.ensure_folder()
            target = os.path.join(
                folder, name_for(datetime.now(), SnapshotPurpose.PRE_RESTORE)
            )
            shares_live_db = self.store.settings.is_stored_in(self.db_path)
            if shares_live_db:
                self.store.settings.checkpoint()
            shutil.copy2(self.db_path, target)
            safety_path = target
            logger.info("Safety backup created: %s", safety_path)

            if shares_live_db:
                self._release_live_db()
            shutil.copy2(source_path, self.db_path)
        except Exception as exc:
            logger.error("Restore backup failed: %s", exc)
            return RestoreResult(success=False, error=str(exc),
                                 safety_backup_path=safety_path)

        logger.info("Database restored from: %s", source_path)
        return RestoreResult(success=True, path=self.db_path,
                             safety_backup_path=safety_path)

    def _release_live_db(self):
        """Drop our own handles on the live file before it is overwritten.

        Leftover ``-wal``/``-shm`` files describe the old contents; SQLite
        would replay them over the restored file on the next open.
        """
        self.store.settings.close_all()
        for suffix in ("-wal", "-shm"):
            sidecar = self.db_path + suffix
            if os.path.exists(sidecar):
                os.unlink(sidecar)
                logger.debug("Removed stale %s", sidecar)

    def restore_snapshot(self, filename: str) -> RestoreResult:
        """Restore from a snapshot in the backup folder, by filename."""
        if not is_valid_backup_filename(filename) or os.path.basename(filename) != filename:
            logger.error("Invalid backup filename: %r", filename)
            return RestoreResult(success=False, error=f"Invalid backup filename: {filename}")
        try:
            folder = self.store.resolve_folder()
        except Exception as exc:
            logger.error("Restore backup failed: %s", exc)
            return RestoreResult(success=False, error=str(exc))
        return self.restore_backup(os.path.join(folder, filename))
