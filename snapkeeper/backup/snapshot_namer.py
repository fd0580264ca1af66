"""Snapshot filename conventions.

All metadata about a snapshot lives in its filename::

    data_2025-02-01_14-30-00.db              regular backup
    data_pre_restore_2025-02-01_14-31-15.db  safety copy taken before a restore

Timestamps are local time with second precision. Everything that builds or
reads these names goes through this module.
"""

import re
from datetime import datetime
from enum import Enum

from snapkeeper.backup.backup_config import (
    PRE_RESTORE_PREFIX,
    SNAPSHOT_EXTENSION,
    SNAPSHOT_PREFIX,
    SNAPSHOT_TIMESTAMP_FORMAT,
)

_TIMESTAMP_RE = re.compile(
    r"^data_(?:pre_restore_)?(\d{4}-\d{2}-\d{2})_(\d{2})-(\d{2})-(\d{2})\.db$"
)


class SnapshotPurpose(Enum):
    REGULAR = "regular"
    PRE_RESTORE = "pre_restore"


_PREFIXES = {
    SnapshotPurpose.REGULAR: SNAPSHOT_PREFIX,
    SnapshotPurpose.PRE_RESTORE: PRE_RESTORE_PREFIX,
}


def name_for(timestamp: datetime, purpose: SnapshotPurpose = SnapshotPurpose.REGULAR) -> str:
    """Return the canonical snapshot filename for ``timestamp``.

    Two calls within the same second produce the same name.
    """
    return f"{_PREFIXES[purpose]}{timestamp.strftime(SNAPSHOT_TIMESTAMP_FORMAT)}{SNAPSHOT_EXTENSION}"


def parse_timestamp(filename: str) -> str | None:
    """Extract an ISO-ordered timestamp (``YYYY-MM-DDTHH:MM:SS``) from a name.

    Returns None when the name does not carry a timestamp; callers fall back
    to the file's modification time.
    """
    match = _TIMESTAMP_RE.match(filename)
    if not match:
        return None
    date, hours, minutes, seconds = match.groups()
    return f"{date}T{hours}:{minutes}:{seconds}"


def parse_purpose(filename: str) -> SnapshotPurpose:
    if filename.startswith(PRE_RESTORE_PREFIX):
        return SnapshotPurpose.PRE_RESTORE
    return SnapshotPurpose.REGULAR


def is_valid_backup_filename(filename: str) -> bool:
    """True iff ``filename`` looks like a snapshot (``data_*.db``)."""
    return filename.startswith(SNAPSHOT_PREFIX) and filename.endswith(SNAPSHOT_EXTENSION)
