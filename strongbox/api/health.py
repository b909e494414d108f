"""FastAPI health endpoint with database and backup-directory diagnostics."""

from __future__ import annotations

from fastapi import APIRouter
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from ..db import SessionLocal
from ..services.backup_settings import load_backup_config
from ..services.storage import BackupStore

router = APIRouter(tags=["health"])


@router.get("/health")
async def health():
    """Health check endpoint for load balancers and monitoring."""
    db_ok = False
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        db_ok = True
        config = load_backup_config(db)
    except SQLAlchemyError:
        config = load_backup_config(None)
    finally:
        db.close()

    storage_ok = BackupStore(config.backup_dir).is_writable()

    status = "ok" if db_ok and storage_ok else "degraded"
    return {
        "status": status,
        "service": "strongbox",
        "checks": {
            "database": "ok" if db_ok else "unreachable",
            "backup_dir": "ok" if storage_ok else "not_writable",
        },
    }
