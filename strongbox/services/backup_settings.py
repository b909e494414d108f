"""Effective backup configuration: environment defaults overridden by the settings table."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..api.schemas import RetentionPolicy
from ..config import Settings, settings as app_settings
from ..models.setting import Setting

logger = logging.getLogger(__name__)


def _as_bool(raw: str) -> bool:
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off", ""):
        return False
    raise ValueError(f"not a boolean: {raw!r}")


def _as_compression(raw: str) -> int:
    level = int(raw)
    if not 1 <= level <= 9:
        raise ValueError("compression level must be 1-9")
    return level


def _as_path(raw: str) -> Path:
    if not raw.strip():
        raise ValueError("path must not be empty")
    return Path(raw.strip())


def _as_non_negative(raw: str) -> int:
    value = int(raw)
    if value < 0:
        raise ValueError("must be >= 0")
    return value


def _as_positive(raw: str) -> int:
    value = int(raw)
    if value < 1:
        raise ValueError("must be >= 1")
    return value


# settings-table key -> (BackupConfig field, parser)
SETTING_KEYS: dict[str, tuple[str, Callable[[str], Any]]] = {
    "backup_path": ("backup_dir", _as_path),
    "backup_max_files": ("max_files", _as_positive),
    "backup_retention_days": ("retention_days", _as_non_negative),
    "backup_compression_level": ("compression_level", _as_compression),
    "backup_verify_integrity": ("verify", _as_bool),
    "backup_notifications_enabled": ("notifications_enabled", _as_bool),
    "backup_notification_email": ("notification_email", str.strip),
}


@dataclass
class BackupConfig:
    backup_dir: Path
    max_files: int = 30
    retention_days: int = 30
    compression_level: int = 6
    verify: bool = True
    checksum: bool = True
    include_tables: list[str] = field(default_factory=list)
    notifications_enabled: bool = True
    notification_email: str = ""

    @property
    def policy(self) -> RetentionPolicy:
        return RetentionPolicy(retention_days=self.retention_days, max_files=self.max_files)


def config_from_settings(s: Settings | None = None) -> BackupConfig:
    """Build the default BackupConfig from environment-backed settings."""
    s = s or app_settings
    return BackupConfig(
        backup_dir=s.effective_backup_dir,
        max_files=s.backup_max_files,
        retention_days=s.backup_retention_days,
        compression_level=s.backup_compression_level,
        verify=s.backup_verify_integrity,
        checksum=s.backup_create_checksum,
        include_tables=list(s.backup_include_tables),
        notifications_enabled=s.backup_notifications_enabled,
        notification_email=s.backup_notification_email,
    )


def default_values(config: BackupConfig | None = None) -> dict[str, str]:
    """Defaults for the settings API, rendered as strings like stored values."""
    config = config or config_from_settings()
    out = {}
    for key, (attr, _) in SETTING_KEYS.items():
        value = getattr(config, attr)
        out[key] = str(value).lower() if isinstance(value, bool) else str(value)
    return out


def load_backup_config(db: Session | None, base: BackupConfig | None = None) -> BackupConfig:
    """Apply stored overrides to *base*. Falls back to *base* if the table is unavailable."""
    config = base or config_from_settings()
    if db is None:
        return config

    try:
        rows = db.query(Setting).filter(Setting.key.in_(list(SETTING_KEYS))).all()
    except SQLAlchemyError as e:
        logger.warning("Could not load backup settings from database, using defaults: %s", e)
        db.rollback()
        return config

    overrides: dict[str, Any] = {}
    for row in rows:
        attr, parse = SETTING_KEYS[row.key]
        try:
            value = parse(row.value or "")
        except ValueError as e:
            logger.warning("Ignoring invalid setting %s=%r: %s", row.key, row.value, e)
            continue
        overrides[attr] = value

    if overrides:
        logger.debug("Backup settings overridden from database: %s", sorted(overrides))
    return replace(config, **overrides)


def validate_setting(key: str, value: str) -> str | None:
    """Return an error message if *value* is not acceptable for a backup setting key."""
    if key not in SETTING_KEYS:
        return None
    _, parse = SETTING_KEYS[key]
    try:
        parse(value)
    except ValueError as e:
        return f"Invalid value for {key}: {e}"
    return None
