"""Backup failure log API."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Query

from ..services.error_log import ErrorSource, failure_log

router = APIRouter(prefix="/errors", tags=["errors"])


@router.get("")
def list_errors(
    source: Optional[ErrorSource] = None,
    filename: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
):
    """Recent backup failures, newest first. Filter by operation or backup filename."""
    entries = failure_log.get_errors(source=source, filename=filename, limit=limit)
    return {
        "success": True,
        "errors": [e.as_dict() for e in entries],
        "counts": failure_log.counts(),
        "total": failure_log.count,
    }


@router.delete("")
def clear_errors(source: Optional[ErrorSource] = None):
    """Clear the log, or only the failures of one operation."""
    return {"success": True, "cleared": failure_log.clear(source)}
