"""Pydantic schemas for API request/response, decoupled from the filesystem layer."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, Field

BackupKind = Literal["full", "structure"]


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Backup artifacts
# ---------------------------------------------------------------------------


class BackupFile(BaseModel):
    filename: str
    kind: BackupKind
    size_bytes: int = Field(..., ge=0)
    created_at: datetime
    age_days: int = Field(..., ge=0)
    path: Path = Field(..., exclude=True)


class BackupListing(BaseModel):
    success: bool = True
    backups: list[BackupFile] = Field(default_factory=list)
    total_count: int = 0
    total_size: int = 0
    total_size_human: str = "0 B"
    error: Optional[str] = None


class LatestBackup(BaseModel):
    filename: str
    created_at: datetime


class BackupStatus(BaseModel):
    total_backups: int
    total_size: str
    latest_backup: Optional[LatestBackup] = None
    days_since_last_backup: Optional[int] = None
    status: Literal["healthy", "warning", "error"]
    status_message: str


# ---------------------------------------------------------------------------
# Operation results
# ---------------------------------------------------------------------------


class BackupResult(BaseModel):
    success: bool
    kind: BackupKind = "full"
    filename: Optional[str] = None
    size_bytes: Optional[int] = None
    tables_count: Optional[int] = None
    checksum: Optional[str] = None
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=_now)


class DeleteResult(BaseModel):
    success: bool
    filename: str
    reason: Optional[Literal["not_found", "invalid_path", "io_error"]] = None
    error: Optional[str] = None


class LookupFailure(BaseModel):
    """Why a backup could not be served for download."""

    success: Literal[False] = False
    filename: str
    reason: Literal["not_found", "invalid_path", "io_error"]
    error: str


class CleanupResult(BaseModel):
    success: bool
    files_deleted: int = 0
    total_deleted: int = 0
    size_freed: str = "0 B"
    errors: list[str] = Field(default_factory=list)
    error: Optional[str] = None
    message: str = ""


class RetentionPolicy(BaseModel):
    """Keep the newest ``max_files`` backups that are at most ``retention_days`` old.

    ``max_files`` is at least 1: a policy can never empty the directory.
    """

    retention_days: int = Field(30, ge=0)
    max_files: int = Field(30, ge=1)


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class BackupCreateRequest(BaseModel):
    kind: BackupKind = "full"


class BackupDeleteRequest(BaseModel):
    filename: str = Field(..., min_length=1, max_length=255)


class CleanupRequest(BaseModel):
    retention_days: Optional[int] = Field(None, ge=0)
    max_files: Optional[int] = Field(None, ge=1)
