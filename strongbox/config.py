"""Strongbox configuration — loads from environment and local config files."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


def _find_repo_root() -> Path:
    """Walk up from this file to find the repo root (where pyproject.toml lives)."""
    p = Path(__file__).resolve().parent
    while p != p.parent:
        if (p / "pyproject.toml").exists():
            return p
        p = p.parent
    return Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Application settings — populated from env vars or .env file."""

    # App
    app_name: str = "Strongbox"
    app_version: str = "0.1.0"
    environment: str = "development"
    debug: bool = False

    # Database being backed up (also holds the settings table)
    database_url: str = ""

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Admin API key; when set, /api/* requires it (STRONGBOX_API_KEY)
    api_key: Optional[str] = None

    # Paths
    repo_root: Path = _find_repo_root()
    backup_dir: Optional[Path] = None
    alert_config: Optional[Path] = None

    # Backup behaviour (defaults; the settings table can override)
    backup_max_files: int = Field(30, ge=1)
    backup_retention_days: int = Field(30, ge=0)
    backup_compression_level: int = 6
    backup_verify_integrity: bool = True
    backup_create_checksum: bool = True
    backup_include_tables: list[str] = []

    # Notifications
    backup_notifications_enabled: bool = True
    backup_notification_email: str = ""

    model_config = {"env_prefix": "STRONGBOX_", "env_file": ".env"}

    @property
    def local_dir(self) -> Path:
        return self.repo_root / "local"

    @property
    def data_dir(self) -> Path:
        d = self.local_dir / "data"
        d.mkdir(parents=True, exist_ok=True)
        return d

    @property
    def effective_backup_dir(self) -> Path:
        return self.backup_dir or self.local_dir / "backups"

    @property
    def effective_alert_config(self) -> Path:
        return self.alert_config or self.local_dir / "config" / "alerts.json"

    @property
    def effective_database_url(self) -> str:
        if self.database_url:
            return self.database_url
        return f"sqlite:///{self.data_dir / 'strongbox.db'}"


settings = Settings()
