"""Tests for BackupController — create, list, delete, cleanup, status, auto backup."""

from __future__ import annotations

import gzip
import sqlite3
from dataclasses import replace
from datetime import timedelta
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from pydantic import ValidationError
from sqlalchemy import create_engine

from strongbox.api.schemas import BackupResult, LookupFailure, RetentionPolicy
from strongbox.dump.source import SQLAlchemySource
from strongbox.services.backup import BackupController
from strongbox.services.storage import FILENAME_RE, BackupStorageError, BackupStore

from .conftest import FIXED_NOW, make_backup_file


def _read_dump(path: Path) -> str:
    with gzip.open(path, "rt", encoding="utf-8") as f:
        return f.read()


# ── Create ────────────────────────────────────────────────────────────────


def test_full_backup_of_three_tables(controller, backup_dir):
    result = controller.create_full_backup()

    assert result.success is True
    assert result.tables_count == 3
    assert result.filename.endswith(".sql.gz")
    assert FILENAME_RE.match(result.filename)
    assert result.filename == "backup_full_20240206_120000.sql.gz"
    assert result.size_bytes == (backup_dir / result.filename).stat().st_size

    sql = _read_dump(backup_dir / result.filename)
    for table in ("users", "articles", "comments"):
        assert f'DROP TABLE IF EXISTS "{table}";' in sql
    assert "INSERT INTO" in sql


def test_created_backup_is_immediately_listed(controller):
    result = controller.create_full_backup()
    listing = controller.list_backups()
    assert [b.filename for b in listing.backups] == [result.filename]


def test_full_backup_round_trip(controller, backup_dir, tmp_path):
    result = controller.create_full_backup()
    sql = _read_dump(backup_dir / result.filename)

    restored = sqlite3.connect(str(tmp_path / "restored.db"))
    try:
        restored.executescript(sql)
        tables = sorted(
            r[0] for r in restored.execute(
                "SELECT name FROM sqlite_master WHERE type='table'"
            )
        )
        assert tables == ["articles", "comments", "users"]
        counts = {
            t: restored.execute(f"SELECT COUNT(*) FROM {t}").fetchone()[0] for t in tables
        }
        assert counts == {"articles": 2, "comments": 3, "users": 2}
        bio = restored.execute("SELECT bio FROM users WHERE id = 2").fetchone()[0]
        assert bio == "It's a back\\slash"
    finally:
        restored.close()


def test_structure_backup_has_schema_only(controller, backup_dir):
    result = controller.create_structure_backup()

    assert result.success is True
    assert result.kind == "structure"
    assert result.filename.startswith("backup_structure_")
    sql = _read_dump(backup_dir / result.filename)
    assert "CREATE TABLE users" in sql
    assert "INSERT INTO" not in sql


def test_backup_creates_missing_directory(controller, backup_dir):
    assert not backup_dir.exists()
    assert controller.create_full_backup().success
    assert backup_dir.is_dir()


def test_zero_tables_is_an_empty_valid_dump(tmp_path, backup_config):
    engine = create_engine(f"sqlite:///{tmp_path / 'empty.db'}")
    ctrl = BackupController(
        SQLAlchemySource(engine), BackupStore(backup_config.backup_dir), backup_config,
        clock=lambda: FIXED_NOW,
    )
    result = ctrl.create_full_backup()

    assert result.success is True
    assert result.tables_count == 0
    sql = _read_dump(backup_config.backup_dir / result.filename)
    assert sql.startswith("-- Database Backup")
    assert "CREATE TABLE" not in sql


def test_unreachable_database_reports_connectivity(tmp_path, backup_config, tracker):
    engine = create_engine(f"sqlite:///{tmp_path / 'missing-dir' / 'nope.db'}")
    ctrl = BackupController(
        SQLAlchemySource(engine), BackupStore(backup_config.backup_dir), backup_config,
        tracker=tracker, clock=lambda: FIXED_NOW,
    )
    result = ctrl.create_full_backup()

    assert result.success is False
    assert result.error.startswith("Database unreachable")
    assert result.filename is None
    assert tracker.get_errors(source="backup.create")
    assert list(backup_config.backup_dir.glob("*.sql.gz")) == []


def test_disk_failure_reports_io_error(controller, backup_dir, tracker):
    backup_dir.parent.mkdir(parents=True, exist_ok=True)
    backup_dir.write_text("not a directory")

    result = controller.create_full_backup()

    assert result.success is False
    assert result.error.startswith("I/O error")
    assert tracker.count == 1


def test_failure_mid_dump_leaves_no_partial_file(controller, backup_dir):
    real_iter = controller.source.iter_rows

    def flaky(table):
        if table == "users":
            raise BackupStorageError("No space left on device (errno 28)")
        return real_iter(table)

    with patch.object(controller.source, "iter_rows", side_effect=flaky):
        result = controller.create_full_backup()

    assert result.success is False
    assert "No space left" in result.error
    assert list(backup_dir.iterdir()) == []


def test_unknown_kind(controller):
    result = controller.create_backup("incremental")
    assert result.success is False
    assert "Unknown backup kind" in result.error


# ── List ──────────────────────────────────────────────────────────────────


def test_list_missing_directory_is_empty(controller):
    listing = controller.list_backups()
    assert listing.success is True
    assert listing.backups == []
    assert listing.total_size_human == "0 B"


def test_list_is_deterministic_and_newest_first(controller, backup_dir):
    make_backup_file(backup_dir, "backup_full_20240101_000000.sql.gz", 100)
    make_backup_file(backup_dir, "backup_full_20240201_000000.sql.gz", 200)
    make_backup_file(backup_dir, "backup_full_20240201_000000_1.sql.gz", 300)
    make_backup_file(backup_dir, "stray.sql.gz")

    first = controller.list_backups()
    second = controller.list_backups()

    assert first == second
    assert [b.filename for b in first.backups] == [
        "backup_full_20240201_000000_1.sql.gz",
        "backup_full_20240201_000000.sql.gz",
        "backup_full_20240101_000000.sql.gz",
    ]
    assert [b.age_days for b in first.backups] == [5, 5, 36]
    assert first.total_count == 3
    assert first.total_size == 600


# ── Delete ────────────────────────────────────────────────────────────────


def test_delete_then_list_excludes_file(controller, backup_dir):
    make_backup_file(backup_dir, "backup_full_20240201_000000.sql.gz")
    result = controller.delete_backup("backup_full_20240201_000000.sql.gz")

    assert result.success is True
    assert controller.list_backups().backups == []


def test_delete_not_found(controller, backup_dir):
    backup_dir.mkdir()
    result = controller.delete_backup("backup_full_20240201_000000.sql.gz")
    assert result.success is False
    assert result.reason == "not_found"


def test_delete_traversal_is_rejected_without_mutation(controller, backup_dir, tmp_path, tracker):
    victim = tmp_path / "etc" / "passwd"
    victim.parent.mkdir()
    victim.write_text("root:x:0:0")
    make_backup_file(backup_dir, "backup_full_20240201_000000.sql.gz")

    for name in ("../../etc/passwd", "..%2f..%2fetc%2fpasswd", "../etc/passwd"):
        result = controller.delete_backup(name)
        assert result.success is False
        assert result.reason == "invalid_path"
        assert str(tmp_path) not in result.error

    assert victim.exists()
    assert len(controller.list_backups().backups) == 1
    assert len(tracker.get_errors(source="backup.delete")) == 3


# ── Cleanup ───────────────────────────────────────────────────────────────


def test_cleanup_by_age(controller, backup_dir):
    make_backup_file(backup_dir, "backup_full_20240101_000000.sql.gz", 1024)
    make_backup_file(backup_dir, "backup_full_20240201_000000.sql.gz", 2048)

    result = controller.cleanup_old_backups(RetentionPolicy(retention_days=30, max_files=30))

    assert result.success is True
    assert result.files_deleted == 1
    assert result.total_deleted == 1024
    assert result.size_freed == "1 KB"
    assert result.errors == []
    remaining = [b.filename for b in controller.list_backups().backups]
    assert remaining == ["backup_full_20240201_000000.sql.gz"]


def test_cleanup_ages_respect_threshold(controller, backup_dir):
    for day in range(1, 32):
        make_backup_file(backup_dir, f"backup_full_202401{day:02d}_000000.sql.gz")

    threshold = 10
    before = {b.filename: b for b in controller.list_backups().backups}
    controller.cleanup_old_backups(RetentionPolicy(retention_days=threshold, max_files=100))
    after = {b.filename for b in controller.list_backups().backups}

    for name, backup in before.items():
        age = FIXED_NOW - backup.created_at
        if name in after:
            assert age.days <= threshold
        else:
            assert age.days >= threshold and age.total_seconds() > threshold * 86400


def test_cleanup_by_count(controller, backup_dir):
    for day in range(1, 6):
        make_backup_file(backup_dir, f"backup_full_202402{day:02d}_000000.sql.gz")

    result = controller.cleanup_old_backups(RetentionPolicy(retention_days=365, max_files=2))

    assert result.files_deleted == 3
    assert [b.filename for b in controller.list_backups().backups] == [
        "backup_full_20240205_000000.sql.gz",
        "backup_full_20240204_000000.sql.gz",
    ]


def test_cleanup_uses_configured_policy(controller, backup_dir):
    controller.config.retention_days = 3
    make_backup_file(backup_dir, "backup_full_20240201_000000.sql.gz")
    make_backup_file(backup_dir, "backup_full_20240205_000000.sql.gz")

    result = controller.cleanup_old_backups()
    assert result.files_deleted == 1


def test_cleanup_partial_failure_continues(controller, backup_dir):
    for day in ("01", "02", "03"):
        make_backup_file(backup_dir, f"backup_full_202401{day}_000000.sql.gz", 10)

    real_delete = controller.store.delete

    def flaky_delete(filename):
        if filename == "backup_full_20240102_000000.sql.gz":
            raise BackupStorageError("Operation not permitted (errno 1)")
        return real_delete(filename)

    with patch.object(controller.store, "delete", side_effect=flaky_delete):
        result = controller.cleanup_old_backups(RetentionPolicy(retention_days=30, max_files=30))

    assert result.success is True
    assert result.files_deleted == 2
    assert len(result.errors) == 1
    assert "backup_full_20240102_000000.sql.gz" in result.errors[0]


def test_cleanup_tolerates_file_already_gone(controller, backup_dir):
    make_backup_file(backup_dir, "backup_full_20240101_000000.sql.gz")
    stale = controller.store.scan()
    (backup_dir / "backup_full_20240101_000000.sql.gz").unlink()

    with patch.object(controller.store, "scan", return_value=stale):
        result = controller.cleanup_old_backups(RetentionPolicy(retention_days=30, max_files=30))

    assert result.success is True
    assert result.files_deleted == 0
    assert result.errors == []


def test_cleanup_total_failure(controller):
    with patch.object(controller.store, "scan", side_effect=BackupStorageError("Permission denied (errno 13)")):
        result = controller.cleanup_old_backups()

    assert result.success is False
    assert "Permission denied" in result.error
    assert result.files_deleted == 0


def test_cleanup_nothing_to_delete(controller, backup_dir):
    make_backup_file(backup_dir, "backup_full_20240205_000000.sql.gz")
    result = controller.cleanup_old_backups()
    assert result.files_deleted == 0
    assert result.message == "No old backups to delete"


# ── Status / download ─────────────────────────────────────────────────────


def test_status_no_backups(controller):
    status = controller.status()
    assert status.status == "error"
    assert status.status_message == "No backups found"


def test_status_thresholds(controller, backup_dir):
    make_backup_file(backup_dir, "backup_full_20240201_000000.sql.gz", 2048)
    status = controller.status()
    assert status.status == "warning"
    assert status.days_since_last_backup == 5
    assert status.latest_backup.filename == "backup_full_20240201_000000.sql.gz"

    make_backup_file(backup_dir, "backup_full_20240206_000000.sql.gz")
    assert controller.status().status == "healthy"


def test_status_stale(controller, backup_dir):
    make_backup_file(backup_dir, "backup_full_20240101_000000.sql.gz")
    assert controller.status().status == "error"


def test_open_backup(controller, backup_dir):
    make_backup_file(backup_dir, "backup_full_20240201_000000.sql.gz", 5)
    found = controller.open_backup("backup_full_20240201_000000.sql.gz")
    assert found.size_bytes == 5

    rejected = controller.open_backup("../backup_full_20240201_000000.sql.gz")
    assert isinstance(rejected, LookupFailure)
    assert rejected.success is False
    assert rejected.reason == "invalid_path"

    missing = controller.open_backup("backup_full_20240202_000000.sql.gz")
    assert isinstance(missing, LookupFailure)
    assert missing.reason == "not_found"


# ── Auto backup ───────────────────────────────────────────────────────────


def test_auto_backup_prunes_and_notifies(controller, backup_dir):
    make_backup_file(backup_dir, "backup_full_20230101_000000.sql.gz")
    controller.notifier = MagicMock()

    result = controller.auto_backup()

    assert result.success is True
    names = [b.filename for b in controller.list_backups().backups]
    assert names == [result.filename]
    controller.notifier.notify.assert_called_once()
    sent = controller.notifier.notify.call_args.args[0]
    assert isinstance(sent, BackupResult)
    assert sent.success is True


def test_auto_backup_failure_notifies_with_last_success(controller, backup_dir):
    make_backup_file(backup_dir, "backup_full_20240201_000000.sql.gz")
    controller.notifier = MagicMock()

    with patch.object(controller.source, "list_tables", side_effect=BackupStorageError("disk full")):
        result = controller.auto_backup()

    assert result.success is False
    kwargs = controller.notifier.notify.call_args.kwargs
    assert kwargs["last_success"] == "2024-02-01 00:00:00"
    # failed run must not prune
    assert len(controller.list_backups().backups) == 1


def test_auto_backup_survives_notifier_errors(controller):
    controller.notifier = MagicMock()
    controller.notifier.notify.side_effect = RuntimeError("smtp down")
    assert controller.auto_backup().success is True


class TickingClock:
    """Advances by *step* on every read, like wall time during a slow dump."""

    def __init__(self, start, step=timedelta(milliseconds=400)):
        self.now = start
        self.step = step

    def __call__(self):
        current = self.now
        self.now += self.step
        return current


def _ticking_controller(controller, **config_changes):
    return BackupController(
        source=controller.source,
        store=controller.store,
        config=replace(controller.config, **config_changes),
        tracker=controller.tracker,
        clock=TickingClock(FIXED_NOW),
    )


def test_auto_backup_keeps_new_file_with_zero_day_retention(controller, backup_dir):
    make_backup_file(backup_dir, "backup_full_20240205_000000.sql.gz")
    ctrl = _ticking_controller(controller, retention_days=0)

    result = ctrl.auto_backup()

    assert result.success is True
    names = [b.filename for b in ctrl.list_backups().backups]
    assert names == [result.filename]


def test_auto_backup_keeps_new_file_when_cap_is_one(controller, backup_dir):
    # a file stamped in the future (clock skew) outranks the new backup
    make_backup_file(backup_dir, "backup_full_20250101_000000.sql.gz")
    ctrl = _ticking_controller(controller, max_files=1)

    result = ctrl.auto_backup()

    assert result.success is True
    names = {b.filename for b in ctrl.list_backups().backups}
    assert result.filename in names


def test_cleanup_keep_names_are_never_deleted(controller, backup_dir):
    make_backup_file(backup_dir, "backup_full_20240101_000000.sql.gz")
    make_backup_file(backup_dir, "backup_full_20240102_000000.sql.gz")

    result = controller.cleanup_old_backups(
        RetentionPolicy(retention_days=0, max_files=1),
        keep={"backup_full_20240101_000000.sql.gz"},
    )

    assert result.files_deleted == 1
    assert [b.filename for b in controller.list_backups().backups] == [
        "backup_full_20240101_000000.sql.gz",
    ]


def test_zero_file_cap_is_rejected():
    with pytest.raises(ValidationError):
        RetentionPolicy(max_files=0)


def test_zero_file_cap_in_config_is_rejected(backup_config):
    with pytest.raises(ValidationError):
        replace(backup_config, max_files=0).policy


def test_cleanup_retention_boundary(controller, backup_dir):
    # FIXED_NOW minus exactly 30 days, and one second earlier
    make_backup_file(backup_dir, "backup_full_20240107_120000.sql.gz")
    make_backup_file(backup_dir, "backup_full_20240107_115959.sql.gz")

    result = controller.cleanup_old_backups(RetentionPolicy(retention_days=30, max_files=30))

    assert result.files_deleted == 1
    assert [b.filename for b in controller.list_backups().backups] == [
        "backup_full_20240107_120000.sql.gz",
    ]


def test_cleanup_count_boundary(controller, backup_dir):
    for day in range(1, 4):
        make_backup_file(backup_dir, f"backup_full_202402{day:02d}_000000.sql.gz")

    assert controller.cleanup_old_backups(RetentionPolicy(retention_days=30, max_files=3)).files_deleted == 0
    assert controller.cleanup_old_backups(RetentionPolicy(retention_days=30, max_files=1)).files_deleted == 2


def test_cleanup_failures_are_logged_per_file(controller, backup_dir, tracker):
    make_backup_file(backup_dir, "backup_full_20240101_000000.sql.gz")

    with patch.object(controller.store, "delete", side_effect=BackupStorageError("Operation not permitted (errno 1)")):
        controller.cleanup_old_backups()

    [entry] = tracker.get_errors(source="backup.cleanup")
    assert entry.filename == "backup_full_20240101_000000.sql.gz"
    assert entry.kind == "full"
    assert entry.error_type == "BackupStorageError"
