"""Backup controller — create, list, delete and prune gzip SQL dumps.

Every public method returns a result model instead of raising, so HTTP and
CLI callers can always render a message.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Collection

from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..api.schemas import (
    BackupFile,
    BackupListing,
    BackupResult,
    BackupStatus,
    CleanupResult,
    DeleteResult,
    LatestBackup,
    LookupFailure,
    RetentionPolicy,
)
from ..dump.serializer import BACKUP_KINDS, KIND_FULL, KIND_STRUCTURE, DumpWriter
from ..dump.source import SchemaSource, SQLAlchemySource
from .alerts import AlertConfig, BackupNotifier
from .backup_settings import BackupConfig, load_backup_config
from .error_log import BackupFailureLog, failure_log
from .storage import (
    BackupError,
    BackupNotFound,
    BackupStorageError,
    BackupStore,
    InvalidBackupPath,
    StoredBackup,
    format_size,
)

logger = logging.getLogger(__name__)

# Dashboard thresholds (days since the newest backup)
STATUS_WARNING_DAYS = 1
STATUS_ERROR_DAYS = 7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BackupController:
    """Orchestrates backups over one database source and one backup directory."""

    def __init__(
        self,
        source: SchemaSource,
        store: BackupStore,
        config: BackupConfig,
        notifier: BackupNotifier | None = None,
        tracker: BackupFailureLog | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.source = source
        self.store = store
        self.config = config
        self.notifier = notifier
        self.tracker = tracker if tracker is not None else failure_log
        self._clock = clock

    # -- Create --------------------------------------------------------------

    def create_backup(self, kind: str = KIND_FULL) -> BackupResult:
        """Dump the database (or just its schema) to a new .sql.gz file."""
        now = self._clock()
        if kind not in BACKUP_KINDS:
            return BackupResult(success=False, error=f"Unknown backup kind '{kind}'", created_at=now)

        logger.info("Starting %s database backup", kind)
        try:
            tables = self.source.list_tables()
            if not tables:
                logger.warning("No tables found in %s, writing an empty %s dump",
                               self.source.database_name, kind)
            writer = DumpWriter(self.source, tables, kind=kind, generated_at=now)
            written = self.store.write(
                kind,
                writer.chunks(),
                now,
                compression_level=self.config.compression_level,
                verify=self.config.verify,
                checksum=self.config.checksum,
            )
        except OperationalError as e:
            return self._create_failed(kind, now, f"Database unreachable: {e.orig}", e)
        except DBAPIError as e:
            return self._create_failed(kind, now, f"Database error during dump: {e.orig}", e)
        except SQLAlchemyError as e:
            return self._create_failed(kind, now, f"Database error during dump: {e}", e)
        except BackupStorageError as e:
            return self._create_failed(kind, now, f"I/O error: {e}", e)
        except Exception as e:
            logger.exception("Unexpected error during %s backup", kind)
            return self._create_failed(kind, now, f"Unexpected error: {e}", e)

        logger.info(
            "backup.created filename=%s kind=%s size=%d tables=%d rows=%d",
            written.filename, kind, written.size_bytes, len(tables), writer.rows_written,
        )
        return BackupResult(
            success=True,
            kind=kind,
            filename=written.filename,
            size_bytes=written.size_bytes,
            tables_count=len(tables),
            checksum=written.checksum,
            created_at=now,
        )

    def create_full_backup(self) -> BackupResult:
        return self.create_backup(KIND_FULL)

    def create_structure_backup(self) -> BackupResult:
        return self.create_backup(KIND_STRUCTURE)

    def _create_failed(self, kind: str, now: datetime, message: str, exc: Exception) -> BackupResult:
        logger.error("Database %s backup failed: %s", kind, message)
        self.tracker.record("backup.create", exc, kind=kind)
        return BackupResult(success=False, kind=kind, error=message, created_at=now)

    # -- List / status -------------------------------------------------------

    def _to_file(self, stored: StoredBackup, now: datetime) -> BackupFile:
        age = max(0, (now - stored.created_at).days)
        return BackupFile(
            filename=stored.filename,
            kind=stored.kind,
            size_bytes=stored.size_bytes,
            created_at=stored.created_at,
            age_days=age,
            path=stored.path,
        )

    def list_backups(self) -> BackupListing:
        """Return every backup in the directory, newest first."""
        try:
            stored = self.store.scan()
        except BackupStorageError as e:
            logger.error("Failed to list backups: %s", e)
            self.tracker.record("backup.list", e)
            return BackupListing(success=False, error=str(e))

        now = self._clock()
        files = [self._to_file(s, now) for s in stored]
        total = sum(f.size_bytes for f in files)
        return BackupListing(
            success=True,
            backups=files,
            total_count=len(files),
            total_size=total,
            total_size_human=format_size(total),
        )

    def status(self) -> BackupStatus:
        """Summarize backup health for dashboards."""
        listing = self.list_backups()
        if not listing.success:
            return BackupStatus(
                total_backups=0,
                total_size="0 B",
                status="error",
                status_message="Failed to read backup directory",
            )
        if not listing.backups:
            return BackupStatus(
                total_backups=0,
                total_size="0 B",
                status="error",
                status_message="No backups found",
            )

        latest = listing.backups[0]
        days = latest.age_days
        if days > STATUS_ERROR_DAYS:
            status, message = "error", f"Last backup is {days} days old"
        elif days > STATUS_WARNING_DAYS:
            status, message = "warning", f"Last backup is {days} days old"
        else:
            status, message = "healthy", "Backups are up to date"

        return BackupStatus(
            total_backups=listing.total_count,
            total_size=listing.total_size_human,
            latest_backup=LatestBackup(filename=latest.filename, created_at=latest.created_at),
            days_since_last_backup=days,
            status=status,
            status_message=message,
        )

    # -- Delete / download ---------------------------------------------------

    def delete_backup(self, filename: str) -> DeleteResult:
        """Permanently remove one backup file from the backup directory."""
        try:
            freed = self.store.delete(filename)
        except InvalidBackupPath as e:
            logger.warning("Rejected backup delete for %r: possible path traversal attempt", filename)
            self.tracker.record("backup.delete", e, filename=filename)
            return DeleteResult(success=False, filename=filename, reason="invalid_path", error=str(e))
        except BackupNotFound as e:
            logger.info("Backup delete failed, not found: %s", filename)
            return DeleteResult(success=False, filename=filename, reason="not_found", error=str(e))
        except BackupError as e:
            logger.error("Failed to delete backup %s: %s", filename, e)
            self.tracker.record("backup.delete", e, filename=filename)
            return DeleteResult(success=False, filename=filename, reason="io_error", error=str(e))

        logger.info("backup.deleted filename=%s size=%d", filename, freed)
        return DeleteResult(success=True, filename=filename)

    def open_backup(self, filename: str) -> BackupFile | LookupFailure:
        """Resolve a backup for download, or describe why it cannot be served."""
        try:
            stored = self.store.locate(filename)
        except InvalidBackupPath as e:
            logger.warning("Rejected backup download for %r: possible path traversal attempt", filename)
            self.tracker.record("backup.download", e, filename=filename)
            return LookupFailure(filename=filename, reason="invalid_path", error=str(e))
        except BackupNotFound as e:
            return LookupFailure(filename=filename, reason="not_found", error=str(e))
        except OSError as e:
            return LookupFailure(filename=filename, reason="io_error", error=str(e))
        logger.info("Backup %s opened for download", filename)
        return self._to_file(stored, self._clock())

    # -- Retention -----------------------------------------------------------

    def cleanup_old_backups(
        self,
        policy: RetentionPolicy | None = None,
        keep: Collection[str] = (),
    ) -> CleanupResult:
        """Delete backups beyond the retention age or the max-file count.

        A file survives only if it is among the newest ``max_files`` and no
        older than ``retention_days``. Names in *keep* are never deleted.
        Individual failures are collected, not raised.
        """
        policy = policy or self.config.policy
        try:
            stored = self.store.scan()
        except BackupStorageError as e:
            logger.error("Backup cleanup failed: %s", e)
            self.tracker.record("backup.cleanup", e)
            return CleanupResult(success=False, error=str(e), message="Cleanup failed")

        now = self._clock()
        max_age = timedelta(days=policy.retention_days)
        doomed = [
            b for i, b in enumerate(stored)
            if b.filename not in keep
            and (i >= policy.max_files or now - b.created_at > max_age)
        ]

        deleted = 0
        freed = 0
        errors: list[str] = []
        for backup in doomed:
            try:
                freed += self.store.delete(backup.filename)
                deleted += 1
            except BackupNotFound:
                logger.debug("Backup %s already removed", backup.filename)
            except BackupError as e:
                errors.append(f"{backup.filename}: {e}")
                self.tracker.record("backup.cleanup", e, filename=backup.filename, kind=backup.kind)

        if errors:
            logger.warning("Backup cleanup finished with %d error(s): %s", len(errors), errors)
        logger.info(
            "backup.cleanup files_deleted=%d bytes_freed=%d retention_days=%d max_files=%d",
            deleted, freed, policy.retention_days, policy.max_files,
        )

        message = f"Deleted {deleted} old backup files" if deleted else "No old backups to delete"
        return CleanupResult(
            success=True,
            files_deleted=deleted,
            total_deleted=freed,
            size_freed=format_size(freed),
            errors=errors,
            message=message,
        )

    # -- Scheduled -----------------------------------------------------------

    def auto_backup(self) -> BackupResult:
        """Cron entry point: full backup, prune on success, then notify.

        The backup just written is exempt from the prune, whatever the policy.
        """
        logger.info("Starting automatic backup")
        result = self.create_full_backup()
        if result.success:
            cleanup = self.cleanup_old_backups(keep={result.filename})
            if not cleanup.success or cleanup.errors:
                logger.warning("Post-backup cleanup incomplete: %s", cleanup.error or cleanup.errors)
        self._notify(result)
        return result

    def _last_success(self) -> str:
        listing = self.list_backups()
        if listing.success and listing.backups:
            return listing.backups[0].created_at.strftime("%Y-%m-%d %H:%M:%S")
        return "Never"

    def _notify(self, result: BackupResult) -> None:
        if self.notifier is None:
            return
        try:
            last = "" if result.success else self._last_success()
            self.notifier.notify(result, last_success=last or "Never")
        except Exception as e:
            logger.error("Failed to send backup notification: %s", e)


def get_backup_controller(db: Session | None = None) -> BackupController:
    """Build a controller from settings, the shared engine and stored overrides."""
    from ..config import settings
    from ..db import engine

    config = load_backup_config(db)
    notifier = BackupNotifier(
        AlertConfig.from_file(str(settings.effective_alert_config)),
        extra_recipient=config.notification_email,
        enabled=config.notifications_enabled,
    )
    return BackupController(
        source=SQLAlchemySource(engine, include_tables=config.include_tables),
        store=BackupStore(config.backup_dir),
        config=config,
        notifier=notifier,
    )
