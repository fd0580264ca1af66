"""Application settings stored in SQLite.

Backs the ``app_settings`` key/value table. The backup subsystem reads and
writes three keys here: ``backup_enabled``, ``backup_folder`` and
``last_backup_time``.
"""

import logging
import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from snapkeeper.backup.backup_config import (
    SETTING_BACKUP_ENABLED,
    SETTING_BACKUP_FOLDER,
    SETTING_LAST_BACKUP_TIME,
)

logger = logging.getLogger(__name__)

# (key, value, display_name) rows seeded on first use
DEFAULT_SETTINGS = [
    (SETTING_BACKUP_ENABLED, "true", "Backup Enabled"),
    (SETTING_BACKUP_FOLDER, None, "Backup Folder"),
    (SETTING_LAST_BACKUP_TIME, None, "Last Backup Time"),
]


@dataclass
class BackupSettings:
    backup_enabled: bool
    backup_folder: str | None
    last_backup_time: str | None

    def to_dict(self) -> dict:
        return {
            "backup_enabled": self.backup_enabled,
            "backup_folder": self.backup_folder,
            "last_backup_time": self.last_backup_time,
        }


def parse_iso_datetime(value: str) -> datetime:
    """Parse an ISO-8601 string into an aware datetime.

    Accepts a trailing ``Z``. Naive values are taken as local time.
    """
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.astimezone()
    return parsed


class SettingsStore:
    """Thread-safe SQLite key/value store for application settings."""

    def __init__(self, db_path: str):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._local = threading.local()
        # Every open connection, across threads, so close_all() can reach them
        self._connections: dict[sqlite3.Connection, threading.Thread] = {}
        self._epoch = 0
        self._conn_lock = threading.Lock()
        self._get_connection()
        logger.info("Settings store initialized at %s", self.db_path)

    def _get_connection(self) -> sqlite3.Connection:
        conn = getattr(self._local, "connection", None)
        if conn is not None and self._local.epoch == self._epoch:
            return conn

        conn = sqlite3.connect(
            str(self.db_path), timeout=10, check_same_thread=False
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        # The file may have been replaced by a restore since the last
        # connection, so the table and defaults are checked every time.
        self._init_db(conn)
        with self._conn_lock:
            self._close_orphaned()
            self._connections[conn] = threading.current_thread()
            self._local.connection = conn
            self._local.epoch = self._epoch
        return conn

    def _init_db(self, conn: sqlite3.Connection):
        conn.execute("""
            CREATE TABLE IF NOT EXISTS app_settings (
                key TEXT PRIMARY KEY,
                value TEXT,
                display_name TEXT
            )
        """)
        conn.executemany(
            "INSERT OR IGNORE INTO app_settings (key, value, display_name) VALUES (?, ?, ?)",
            DEFAULT_SETTINGS,
        )
        conn.commit()

    # ------------------------------------------------------------------
    # Generic key/value access
    # ------------------------------------------------------------------

    def get(self, key: str) -> str | None:
        conn = self._get_connection()
        row = conn.execute(
            "SELECT value FROM app_settings WHERE key = ?", (key,)
        ).fetchone()
        return row["value"] if row else None

    def set(self, key: str, value: str | None):
        conn = self._get_connection()
        conn.execute(
            """INSERT INTO app_settings (key, value) VALUES (?, ?)
               ON CONFLICT(key) DO UPDATE SET value = excluded.value""",
            (key, value),
        )
        conn.commit()
        logger.debug("Setting %s updated", key)

    def get_all(self) -> list[dict]:
        conn = self._get_connection()
        rows = conn.execute(
            "SELECT key, value, display_name FROM app_settings ORDER BY key ASC"
        ).fetchall()
        return [dict(row) for row in rows]

    # ------------------------------------------------------------------
    # Backup settings
    # ------------------------------------------------------------------

    def is_backup_enabled(self) -> bool:
        return self.get(SETTING_BACKUP_ENABLED) == "true"

    def get_backup_folder(self) -> str | None:
        return self.get(SETTING_BACKUP_FOLDER) or None

    def get_last_backup_time(self) -> datetime | None:
        """Return the last successful backup time, or None if unknown."""
        value = self.get(SETTING_LAST_BACKUP_TIME)
        if not value:
            return None
        try:
            return parse_iso_datetime(value)
        except ValueError:
            logger.warning("Ignoring unparseable %s value: %r",
                           SETTING_LAST_BACKUP_TIME, value)
            return None

    def set_last_backup_time(self, when: datetime | None = None):
        when = when or datetime.now(timezone.utc)
        self.set(SETTING_LAST_BACKUP_TIME, when.isoformat())

    def get_backup_settings(self) -> BackupSettings:
        return BackupSettings(
            backup_enabled=self.is_backup_enabled(),
            backup_folder=self.get_backup_folder(),
            last_backup_time=self.get(SETTING_LAST_BACKUP_TIME) or None,
        )

    # ------------------------------------------------------------------
    # Sharing a file with the live database
    # ------------------------------------------------------------------

    def is_stored_in(self, path: str) -> bool:
        """True when the settings table lives in the file at ``path``."""
        return self.db_path.resolve() == Path(path).resolve()

    def checkpoint(self):
        """Write the WAL back into the main file and truncate it.

        Until this runs, committed settings may exist only in ``<db>-wal``,
        so a plain file copy of the database would miss them.
        """
        conn = self._get_connection()
        busy, _, _ = conn.execute("PRAGMA wal_checkpoint(TRUNCATE)").fetchone()
        if busy:
            logger.warning("WAL checkpoint of %s incomplete: database busy", self.db_path)

    def close_all(self):
        """Close the connections of every thread.

        Required before the database file is replaced on disk: an open
        connection would keep serving (and later checkpoint) the old pages.
        Threads reconnect transparently on their next access.
        """
        with self._conn_lock:
            connections, self._connections = list(self._connections), {}
            self._epoch += 1
        for conn in connections:
            try:
                conn.close()
            except sqlite3.Error as exc:
                logger.warning("Error closing settings connection: %s", exc)
        logger.debug("Closed %d settings connection(s)", len(connections))

    def close(self):
        conn = getattr(self._local, "connection", None)
        if conn is None:
            return
        with self._conn_lock:
            self._connections.pop(conn, None)
            self._local.connection = None
        conn.close()

    def _close_orphaned(self):
        # Caller holds self._conn_lock. Scheduler timer threads are short
        # lived; their connections are closed once the thread has exited.
        for conn, thread in list(self._connections.items()):
            if not thread.is_alive():
                del self._connections[conn]
                conn.close()
