"""Snapshot storage.

Lists and deletes snapshot files inside the backup folder and
enforces the retention policy. The folder is a flat directory::

    backups/
    +-- data_2025-02-01_14-30-00.db
    +-- data_2025-02-01_15-30-00.db
    +-- data_pre_restore_2025-02-01_15-42-07.db

Anything in the folder that is not named ``data_*.db`` is left alone.
"""

import logging
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from snapkeeper.backup.backup_config import DEFAULT_BACKUP_FOLDER, MAX_BACKUPS
from snapkeeper.backup.snapshot_namer import (
    SnapshotPurpose,
    is_valid_backup_filename,
    parse_purpose,
    parse_timestamp,
)
from snapkeeper.database.settings_store import SettingsStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Snapshot:
    """One point-in-time copy of the live database."""
    filename: str
    path: str
    timestamp: str
    size: int
    purpose: SnapshotPurpose = SnapshotPurpose.REGULAR

    def to_dict(self) -> dict:
        return {
            "filename": self.filename,
            "path": self.path,
            "timestamp": self.timestamp,
            "size": self.size,
            "purpose": self.purpose.value,
        }


def _is_bare_filename(filename: str) -> bool:
    if filename in (".", ".."):
        return False
    if os.sep in filename or (os.altsep and os.altsep in filename):
        return False
    return os.path.basename(filename) == filename


class SnapshotStore:
    """Directory-scoped access to snapshot files."""

    def __init__(self, settings: SettingsStore, default_folder: str = None):
        self.settings = settings
        self.default_folder = default_folder or DEFAULT_BACKUP_FOLDER

    # ------------------------------------------------------------------
    # Folder
    # ------------------------------------------------------------------

    def resolve_folder(self) -> str:
        """Configured ``backup_folder``, or the default when unset."""
        return self.settings.get_backup_folder() or self.default_folder

    def ensure_folder(self) -> str:
        folder = self.resolve_folder()
        Path(folder).mkdir(parents=True, exist_ok=True)
        return folder

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_snapshots(self) -> list[Snapshot]:
        """Return all snapshots, newest first.

        A missing folder yields an empty list. Any error while reading the
        folder also yields an empty list rather than a partial one.
        """
        try:
            folder = self.resolve_folder()
            try:
                names = os.listdir(folder)
            except FileNotFoundError:
                return []

            snapshots = []
            for name in names:
                if not is_valid_backup_filename(name):
                    continue
                path = os.path.join(folder, name)
                st = os.stat(path)
                if not os.path.isfile(path):
                    continue
                timestamp = parse_timestamp(name) or datetime.fromtimestamp(
                    st.st_mtime
                ).strftime("%Y-%m-%dT%H:%M:%S")
                snapshots.append(Snapshot(
                    filename=name,
                    path=path,
                    timestamp=timestamp,
                    size=st.st_size,
                    purpose=parse_purpose(name),
                ))
        except Exception:
            logger.exception("Error listing backups")
            return []

        snapshots.sort(key=lambda s: s.timestamp, reverse=True)
        return snapshots

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    def delete(self, filename: str) -> bool:
        """Delete one snapshot by filename. Returns True on success."""
        if not is_valid_backup_filename(filename) or not _is_bare_filename(filename):
            logger.error("Invalid backup filename: %r", filename)
            return False

        try:
            path = os.path.join(self.resolve_folder(), filename)
            os.unlink(path)
        except Exception as exc:
            logger.error("Error deleting backup %s: %s", filename, exc)
            return False

        logger.info("Deleted backup: %s", path)
        return True

    def enforce_retention(self, max_to_keep: int = MAX_BACKUPS):
        """Delete the oldest snapshots beyond ``max_to_keep``."""
        try:
            snapshots = self.list_snapshots()
            if len(snapshots) <= max_to_keep:
                logger.info("Backup cleanup: %d backups, keeping all (max: %d)",
                            len(snapshots), max_to_keep)
                return

            to_delete = snapshots[max_to_keep:]
            logger.info("Backup cleanup: found %d backups, deleting %d oldest",
                        len(snapshots), len(to_delete))
            for snapshot in to_delete:
                try:
                    os.unlink(snapshot.path)
                    logger.info("Deleted old backup: %s", snapshot.filename)
                except OSError as exc:
                    logger.warning("Failed to delete backup %s: %s",
                                   snapshot.filename, exc)
        except Exception:
            logger.exception("Error cleaning up old backups")
