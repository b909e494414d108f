"""Backup failure log: the most recent failed operations, kept in memory.

Entries are typed by the operation that failed (``backup.create``,
``backup.delete`` ...) and carry the backup filename and kind when known, so
the error page can show which file a failure was about.
"""

from __future__ import annotations

from collections import Counter, deque
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Literal, get_args

ErrorSource = Literal[
    "backup.create",
    "backup.list",
    "backup.delete",
    "backup.download",
    "backup.cleanup",
]
ERROR_SOURCES: tuple[str, ...] = get_args(ErrorSource)


@dataclass(frozen=True)
class BackupFailure:
    """One failed backup operation."""

    recorded_at: datetime
    source: str
    error_type: str
    message: str
    filename: str | None = None
    kind: str | None = None

    def as_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["recorded_at"] = self.recorded_at.isoformat()
        return data


class BackupFailureLog:
    """Bounded, thread-safe log of backup failures, newest first on read."""

    def __init__(self, max_entries: int = 500) -> None:
        self._entries: deque[BackupFailure] = deque(maxlen=max_entries)
        self._lock = Lock()

    def record(
        self,
        source: ErrorSource,
        error: BaseException | str,
        *,
        filename: str | None = None,
        kind: str | None = None,
    ) -> BackupFailure:
        if source not in ERROR_SOURCES:
            raise ValueError(f"Unknown error source '{source}'")
        entry = BackupFailure(
            recorded_at=datetime.now(timezone.utc),
            source=source,
            error_type=type(error).__name__ if isinstance(error, BaseException) else "BackupFailure",
            message=str(error),
            filename=filename,
            kind=kind,
        )
        with self._lock:
            self._entries.append(entry)
        return entry

    def get_errors(
        self,
        source: ErrorSource | None = None,
        filename: str | None = None,
        limit: int = 50,
    ) -> list[BackupFailure]:
        with self._lock:
            entries = list(reversed(self._entries))
        if source:
            entries = [e for e in entries if e.source == source]
        if filename:
            entries = [e for e in entries if e.filename == filename]
        return entries[:limit]

    def counts(self) -> dict[str, int]:
        """Failures per source, with zeros for sources that have none."""
        with self._lock:
            seen = Counter(e.source for e in self._entries)
        return {source: seen.get(source, 0) for source in ERROR_SOURCES}

    def clear(self, source: ErrorSource | None = None) -> int:
        """Drop entries (all, or one source). Returns how many were removed."""
        with self._lock:
            before = len(self._entries)
            if source is None:
                self._entries.clear()
            else:
                kept = [e for e in self._entries if e.source != source]
                self._entries.clear()
                self._entries.extend(kept)
            return before - len(self._entries)

    @property
    def count(self) -> int:
        return len(self._entries)


failure_log = BackupFailureLog()
