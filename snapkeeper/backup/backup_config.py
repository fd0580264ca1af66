"""Backup system configuration and retention policies."""

import os

# Per-user application data directory (holds the live database by default)
DEFAULT_USER_DATA_DIR = os.path.join(os.path.expanduser("~"), ".snapkeeper")

DEFAULT_DB_PATH = os.path.join(DEFAULT_USER_DATA_DIR, "data.db")

# Settings live in their own file beside the live database unless configured
SETTINGS_DB_NAME = "settings.db"

# Used when the backup_folder setting is absent or empty
DEFAULT_BACKUP_FOLDER = os.path.join(DEFAULT_USER_DATA_DIR, "backups")

# Retention: keep at most this many snapshots, newest first
MAX_BACKUPS = 10

# Scheduler: one backup per hour
BACKUP_INTERVAL_SECONDS = 60 * 60

# Snapshot filenames: data_2025-02-01_14-30-00.db
SNAPSHOT_PREFIX = "data_"
PRE_RESTORE_PREFIX = "data_pre_restore_"
SNAPSHOT_EXTENSION = ".db"
SNAPSHOT_TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"

# Keys in the app_settings table
SETTING_BACKUP_ENABLED = "backup_enabled"
SETTING_BACKUP_FOLDER = "backup_folder"
SETTING_LAST_BACKUP_TIME = "last_backup_time"
