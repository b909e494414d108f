"""Backup API — create, list, delete, download and prune database backups.

Every JSON response uses the envelope ``{success, ..., error?}``.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import FileResponse, JSONResponse
from sqlalchemy.orm import Session

from ..db import get_db
from ..services.backup import BackupController, get_backup_controller
from .schemas import (
    BackupCreateRequest,
    BackupDeleteRequest,
    CleanupRequest,
    LookupFailure,
    RetentionPolicy,
)

router = APIRouter(prefix="/backups", tags=["backups"])

_DELETE_STATUS = {"invalid_path": 400, "not_found": 404, "io_error": 500}


def backup_controller(db: Session = Depends(get_db)) -> BackupController:
    """FastAPI dependency — a controller configured from settings and stored overrides."""
    return get_backup_controller(db)


@router.post("")
def create_backup(
    body: BackupCreateRequest | None = None,
    controller: BackupController = Depends(backup_controller),
):
    """Create a full or structure-only backup."""
    kind = body.kind if body else "full"
    result = controller.create_backup(kind)
    if result.success:
        content = {
            **result.model_dump(mode="json"),
            "message": f"Backup created successfully: {result.filename}",
        }
        return JSONResponse(content)
    return JSONResponse(result.model_dump(mode="json"), status_code=500)


@router.get("")
def list_backups(controller: BackupController = Depends(backup_controller)):
    """List existing backups, newest first."""
    listing = controller.list_backups()
    return JSONResponse(listing.model_dump(mode="json"), status_code=200 if listing.success else 500)


@router.get("/status")
def backup_status(controller: BackupController = Depends(backup_controller)):
    """Dashboard summary of backup health."""
    return {"success": True, **controller.status().model_dump(mode="json")}


@router.delete("")
def delete_backup(
    body: BackupDeleteRequest,
    controller: BackupController = Depends(backup_controller),
):
    """Delete a single backup by filename."""
    result = controller.delete_backup(body.filename)
    if result.success:
        return {**result.model_dump(mode="json"), "message": "Backup file deleted successfully"}
    return JSONResponse(
        result.model_dump(mode="json"),
        status_code=_DELETE_STATUS.get(result.reason or "", 500),
    )


@router.get("/download/{filename}")
def download_backup(filename: str, controller: BackupController = Depends(backup_controller)):
    """Stream a backup file to the client."""
    found = controller.open_backup(filename)
    if isinstance(found, LookupFailure):
        return JSONResponse(
            {"success": False, "error": found.error},
            status_code=_DELETE_STATUS.get(found.reason or "", 500),
        )
    return FileResponse(
        found.path,
        media_type="application/gzip",
        filename=found.filename,
    )


@router.post("/cleanup")
def cleanup_backups(
    body: CleanupRequest | None = None,
    controller: BackupController = Depends(backup_controller),
):
    """Prune backups older than the retention period or beyond the max-file count."""
    policy = None
    if body and (body.retention_days is not None or body.max_files is not None):
        base = controller.config.policy
        policy = RetentionPolicy(
            retention_days=body.retention_days if body.retention_days is not None else base.retention_days,
            max_files=body.max_files if body.max_files is not None else base.max_files,
        )
    result = controller.cleanup_old_backups(policy)
    return JSONResponse(result.model_dump(mode="json"), status_code=200 if result.success else 500)
