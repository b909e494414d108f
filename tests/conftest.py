"""Shared pytest fixtures."""

from __future__ import annotations

import os
import tempfile

# Keep the app's own engine and backup dir away from the repo during tests
os.environ.setdefault("STRONGBOX_DATABASE_URL", "sqlite://")
os.environ.setdefault("STRONGBOX_BACKUP_DIR", tempfile.mkdtemp(prefix="strongbox-test-"))
os.environ.setdefault("STRONGBOX_ALERT_CONFIG", os.path.join(tempfile.gettempdir(), "strongbox-no-alerts.json"))

from datetime import datetime, timezone  # noqa: E402
from pathlib import Path  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine, text  # noqa: E402

from strongbox.dump.source import SQLAlchemySource  # noqa: E402
from strongbox.services.backup import BackupController  # noqa: E402
from strongbox.services.backup_settings import BackupConfig  # noqa: E402
from strongbox.services.error_log import BackupFailureLog  # noqa: E402
from strongbox.services.storage import BackupStore  # noqa: E402

# 2024-02-01 backups are 5 days old, 2024-01-01 backups are 36 days old
FIXED_NOW = datetime(2024, 2, 6, 12, 0, 0, tzinfo=timezone.utc)


def make_backup_file(directory: Path, name: str, size: int = 100) -> Path:
    """Create a fake backup file of *size* bytes."""
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    path.write_bytes(b"\x00" * size)
    return path


@pytest.fixture
def cms_engine(tmp_path: Path):
    """A file-backed SQLite database shaped like the CMS: users, articles, comments."""
    engine = create_engine(f"sqlite:///{tmp_path / 'cms.db'}")
    with engine.begin() as conn:
        conn.execute(text(
            "CREATE TABLE users ("
            " id INTEGER PRIMARY KEY,"
            " username VARCHAR(50) NOT NULL,"
            " bio TEXT,"
            " created_at DATETIME)"
        ))
        conn.execute(text(
            "CREATE TABLE articles ("
            " id INTEGER PRIMARY KEY,"
            " user_id INTEGER REFERENCES users(id),"
            " title VARCHAR(200) NOT NULL,"
            " body TEXT)"
        ))
        conn.execute(text(
            "CREATE TABLE comments ("
            " id INTEGER PRIMARY KEY,"
            " article_id INTEGER REFERENCES articles(id),"
            " content TEXT,"
            " rating REAL)"
        ))
        # Inserted out of order to check primary-key ordering in dumps
        conn.execute(text(
            "INSERT INTO users (id, username, bio, created_at) VALUES "
            "(2, 'dmytro', 'It''s a back\\slash', '2024-01-15 10:30:00'),"
            "(1, 'admin', NULL, '2024-01-01 00:00:00')"
        ))
        conn.execute(text(
            "INSERT INTO articles (id, user_id, title, body) VALUES "
            "(1, 1, 'Hello', 'First post'),"
            "(2, 2, 'Backups 101', 'Always test restores')"
        ))
        conn.execute(text(
            "INSERT INTO comments (id, article_id, content, rating) VALUES "
            "(1, 1, 'Nice', 4.5),"
            "(2, 1, 'Meh', NULL),"
            "(3, 2, 'Useful; thanks', 5.0)"
        ))
    yield engine
    engine.dispose()


@pytest.fixture
def backup_dir(tmp_path: Path) -> Path:
    return tmp_path / "backups"


@pytest.fixture
def backup_config(backup_dir: Path) -> BackupConfig:
    return BackupConfig(backup_dir=backup_dir, notifications_enabled=False)


@pytest.fixture
def tracker() -> BackupFailureLog:
    return BackupFailureLog()


@pytest.fixture
def controller(cms_engine, backup_config: BackupConfig, tracker: BackupFailureLog) -> BackupController:
    return BackupController(
        source=SQLAlchemySource(cms_engine),
        store=BackupStore(backup_config.backup_dir),
        config=backup_config,
        tracker=tracker,
        clock=lambda: FIXED_NOW,
    )
