"""Tests for snapshot filename building and parsing.

Covers:
- Canonical names for regular and pre-restore snapshots
- Timestamp extraction (anchored pattern, ISO ordering)
- Filename validation used before deletes
"""

from datetime import datetime

import pytest

from snapkeeper.backup.snapshot_namer import (
    SnapshotPurpose,
    is_valid_backup_filename,
    name_for,
    parse_purpose,
    parse_timestamp,
)


class TestNameFor:
    def test_regular_name(self):
        ts = datetime(2024, 1, 15, 10, 0, 0)
        assert name_for(ts) == "data_2024-01-15_10-00-00.db"

    def test_pre_restore_name(self):
        ts = datetime(2024, 1, 15, 10, 0, 0)
        assert name_for(ts, SnapshotPurpose.PRE_RESTORE) == \
            "data_pre_restore_2024-01-15_10-00-00.db"

    def test_zero_padded_24_hour(self):
        ts = datetime(2025, 3, 4, 21, 5, 9)
        assert name_for(ts) == "data_2025-03-04_21-05-09.db"

    def test_same_second_same_name(self):
        a = datetime(2024, 6, 1, 12, 30, 45, 1000)
        b = datetime(2024, 6, 1, 12, 30, 45, 999000)
        assert name_for(a) == name_for(b)


class TestParseTimestamp:
    def test_iso_ordered_result(self):
        assert parse_timestamp("data_2024-01-15_10-20-30.db") == "2024-01-15T10:20:30"

    def test_pre_restore_parsed(self):
        assert parse_timestamp("data_pre_restore_2024-01-15_10-20-30.db") == \
            "2024-01-15T10:20:30"

    @pytest.mark.parametrize("purpose", list(SnapshotPurpose))
    def test_round_trip(self, purpose):
        ts = datetime(2023, 12, 31, 23, 59, 58, 123456)
        parsed = parse_timestamp(name_for(ts, purpose))
        assert datetime.fromisoformat(parsed) == ts.replace(microsecond=0)

    @pytest.mark.parametrize("filename", [
        "data_2024-01-15.txt",
        "data_manual.db",
        "xdata_2024-01-15_10-00-00.db",
        "data_2024-01-15_10-00-00.db.bak",
        "readme.txt",
    ])
    def test_no_match_returns_none(self, filename):
        assert parse_timestamp(filename) is None

    def test_string_order_is_chronological(self):
        older = parse_timestamp("data_2024-01-15_23-59-59.db")
        newer = parse_timestamp("data_2024-01-16_00-00-00.db")
        assert newer > older


class TestParsePurpose:
    def test_regular(self):
        assert parse_purpose("data_2024-01-15_10-00-00.db") is SnapshotPurpose.REGULAR

    def test_pre_restore(self):
        assert parse_purpose("data_pre_restore_2024-01-15_10-00-00.db") is \
            SnapshotPurpose.PRE_RESTORE


class TestIsValidBackupFilename:
    def test_accepts_snapshot(self):
        assert is_valid_backup_filename("data_2024-01-15_10-00-00.db")

    def test_accepts_pre_restore(self):
        assert is_valid_backup_filename("data_pre_restore_2024-01-15_10-00-00.db")

    @pytest.mark.parametrize("filename", [
        "invalid.db",
        "../../../etc/passwd",
        "data_2024-01-15.txt",
        "backup_old.db",
        "",
    ])
    def test_rejects(self, filename):
        assert not is_valid_backup_filename(filename)
