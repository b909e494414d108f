"""Strongbox — FastAPI application factory."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from .common import init_logging
from .config import settings
from .db import init_db


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle."""
    init_db()
    init_logging("strongbox-api")
    yield


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Database backup management: gzip SQL dumps with retention",
        lifespan=lifespan,
    )

    # Admin key guard (active when STRONGBOX_API_KEY is set)
    from .middleware import AdminKeyMiddleware
    app.add_middleware(AdminKeyMiddleware)

    # Register routers
    from .api.health import router as health_router
    from .api.backup import router as backup_router
    from .api.settings import router as settings_router
    from .api.errors import router as errors_router
    app.include_router(health_router)
    app.include_router(backup_router, prefix="/api")
    app.include_router(settings_router, prefix="/api")
    app.include_router(errors_router, prefix="/api")

    return app


app = create_app()
