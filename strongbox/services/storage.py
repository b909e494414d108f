"""Backup store — the backup directory as the single source of truth.

On-disk contract: ``backup_<kind>_<YYYYMMDD_HHMMSS>[_<n>].sql.gz``. Files are
written under a hidden temp name and linked into place, so a concurrent scan
never sees a partial dump under a final name.
"""

from __future__ import annotations

import gzip
import hashlib
import logging
import os
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

logger = logging.getLogger(__name__)

FILENAME_RE = re.compile(
    r"^backup_(?P<kind>full|structure)_(?P<stamp>\d{8}_\d{6})(?:_(?P<seq>\d+))?\.sql\.gz$"
)
TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"
TEMP_PREFIX = ".backup_"
TEMP_SUFFIX = ".tmp"

_MAX_NAME_ATTEMPTS = 100
_READ_CHUNK = 1024 * 1024


class BackupError(Exception):
    """Base class for backup store failures."""


class InvalidBackupPath(BackupError):
    """Filename is malformed or resolves outside the backup directory."""


class BackupNotFound(BackupError):
    """Filename is valid but no such backup exists."""


class BackupStorageError(BackupError):
    """Filesystem I/O failed (disk full, permission denied, ...)."""


@dataclass(frozen=True)
class StoredBackup:
    """A backup file as seen by one directory scan."""

    filename: str
    kind: str
    path: Path
    size_bytes: int
    created_at: datetime


@dataclass(frozen=True)
class WrittenBackup:
    filename: str
    path: Path
    size_bytes: int
    checksum: str | None


def parse_backup_filename(filename: str) -> tuple[str, datetime] | None:
    """Return (kind, created_at) for a valid backup filename, else None."""
    m = FILENAME_RE.match(filename)
    if not m:
        return None
    try:
        created = datetime.strptime(m.group("stamp"), TIMESTAMP_FORMAT)
    except ValueError:
        return None
    return m.group("kind"), created.replace(tzinfo=timezone.utc)


def build_backup_filename(kind: str, when: datetime, seq: int = 0) -> str:
    stamp = when.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)
    suffix = f"_{seq}" if seq else ""
    return f"backup_{kind}_{stamp}{suffix}.sql.gz"


def format_size(size: int) -> str:
    """Human-readable byte count, e.g. 1536 -> '1.5 KB'."""
    if size <= 0:
        return "0 B"
    units = ["B", "KB", "MB", "GB", "TB"]
    value = float(size)
    power = 0
    while value >= 1024 and power < len(units) - 1:
        value /= 1024
        power += 1
    return f"{round(value, 2):g} {units[power]}"


def _describe_os_error(exc: OSError) -> str:
    name = os.strerror(exc.errno) if exc.errno else type(exc).__name__
    code = f"errno {exc.errno}" if exc.errno else "no errno"
    return f"{name} ({code})"


class BackupStore:
    """Reads and mutates one backup directory."""

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)

    # -- Directory -----------------------------------------------------------

    def ensure_directory(self) -> None:
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise BackupStorageError(
                f"Cannot create backup directory: {_describe_os_error(e)}"
            ) from e
        if not os.access(self.directory, os.W_OK):
            raise BackupStorageError("Backup directory is not writable")

    def is_writable(self) -> bool:
        return self.directory.is_dir() and os.access(self.directory, os.W_OK)

    # -- Scanning ------------------------------------------------------------

    def scan(self) -> list[StoredBackup]:
        """Return every valid backup file, newest first.

        A missing directory yields an empty list. Files that vanish between
        listing and stat are skipped.
        """
        if not self.directory.exists():
            return []
        try:
            entries = list(os.scandir(self.directory))
        except OSError as e:
            raise BackupStorageError(
                f"Cannot read backup directory: {_describe_os_error(e)}"
            ) from e

        backups: list[StoredBackup] = []
        for entry in entries:
            parsed = parse_backup_filename(entry.name)
            if parsed is None:
                continue
            try:
                if not entry.is_file(follow_symlinks=False):
                    continue
                size = entry.stat(follow_symlinks=False).st_size
            except FileNotFoundError:
                continue
            kind, created = parsed
            backups.append(
                StoredBackup(
                    filename=entry.name,
                    kind=kind,
                    path=Path(entry.path).resolve(),
                    size_bytes=size,
                    created_at=created,
                )
            )
        backups.sort(key=lambda b: (b.created_at, b.filename), reverse=True)
        return backups

    # -- Resolution ----------------------------------------------------------

    def resolve(self, filename: str) -> Path:
        """Map a client-supplied filename to a path strictly inside the directory.

        Raises InvalidBackupPath before any filesystem mutation, or
        BackupNotFound if the name is valid but absent.
        """
        if (
            not filename
            or "/" in filename
            or "\\" in filename
            or "\x00" in filename
            or "%" in filename
            or ".." in filename
        ):
            raise InvalidBackupPath("Invalid backup filename")
        if parse_backup_filename(filename) is None:
            raise InvalidBackupPath("Invalid backup filename")

        base = self.directory.resolve()
        candidate = base / filename
        if not candidate.exists() and not candidate.is_symlink():
            raise BackupNotFound("Backup file not found")
        real = candidate.resolve()
        if real.parent != base or real.name != filename:
            raise InvalidBackupPath("Invalid backup filename")
        if not real.is_file():
            raise BackupNotFound("Backup file not found")
        return real

    # -- Mutation ------------------------------------------------------------

    def delete(self, filename: str) -> int:
        """Delete a backup and return the bytes freed."""
        path = self.resolve(filename)
        try:
            size = path.stat().st_size
            path.unlink()
        except FileNotFoundError as e:
            raise BackupNotFound("Backup file not found") from e
        except OSError as e:
            raise BackupStorageError(
                f"Cannot delete {filename}: {_describe_os_error(e)}"
            ) from e
        return size

    def write(
        self,
        kind: str,
        chunks: Iterable[str],
        when: datetime,
        compression_level: int = 6,
        verify: bool = True,
        checksum: bool = True,
    ) -> WrittenBackup:
        """Compress *chunks* into a new backup file, published atomically."""
        self.ensure_directory()
        stamp = when.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)
        tmp_path = self.directory / f"{TEMP_PREFIX}{kind}_{stamp}_{uuid.uuid4().hex[:12]}{TEMP_SUFFIX}"

        try:
            try:
                with open(tmp_path, "xb") as raw:
                    with gzip.GzipFile(
                        filename="", mode="wb", fileobj=raw, compresslevel=compression_level
                    ) as gz:
                        for chunk in chunks:
                            gz.write(chunk.encode("utf-8"))
                    raw.flush()
                    os.fsync(raw.fileno())
                if verify:
                    self._verify(tmp_path)
                digest = self._sha256(tmp_path) if checksum else None
                final = self._publish(tmp_path, kind, when)
                size = final.stat().st_size
            except OSError as e:
                raise BackupStorageError(
                    f"Failed to write backup file: {_describe_os_error(e)}"
                ) from e
        finally:
            try:
                tmp_path.unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning("Could not remove temp file %s: %s", tmp_path.name, e)

        return WrittenBackup(filename=final.name, path=final, size_bytes=size, checksum=digest)

    def _publish(self, tmp_path: Path, kind: str, when: datetime) -> Path:
        # os.link fails if the target exists, so a final name is never overwritten
        for seq in range(_MAX_NAME_ATTEMPTS):
            final = self.directory / build_backup_filename(kind, when, seq)
            try:
                os.link(tmp_path, final)
                return final
            except FileExistsError:
                continue
        raise BackupStorageError(f"Could not allocate a unique backup filename for {kind}")

    @staticmethod
    def _verify(path: Path) -> None:
        try:
            with gzip.open(path, "rb") as gz:
                while gz.read(_READ_CHUNK):
                    pass
        except (OSError, EOFError) as e:
            raise BackupStorageError(f"Backup integrity check failed: {e}") from e

    @staticmethod
    def _sha256(path: Path) -> str:
        h = hashlib.sha256()
        with open(path, "rb") as f:
            for block in iter(lambda: f.read(_READ_CHUNK), b""):
                h.update(block)
        return h.hexdigest()

    def locate(self, filename: str) -> StoredBackup:
        """Resolve a backup for reading (download)."""
        path = self.resolve(filename)
        parsed = parse_backup_filename(path.name)
        if parsed is None:
            raise InvalidBackupPath("Invalid backup filename")
        kind, created = parsed
        return StoredBackup(
            filename=filename,
            kind=kind,
            path=path,
            size_bytes=path.stat().st_size,
            created_at=created,
        )
