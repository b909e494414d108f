"""Alert dispatch — webhook and email notifications for backup events."""

from __future__ import annotations

import json
import logging
import smtplib
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from email.mime.text import MIMEText
from typing import Any

from ..api.schemas import BackupResult
from .storage import format_size

logger = logging.getLogger(__name__)


@dataclass
class AlertConfig:
    """Alert destination configuration. Loaded from local/config/alerts.json."""

    webhooks: list[str] = field(default_factory=list)
    email_smtp_host: str = ""
    email_smtp_port: int = 587
    email_from: str = ""
    email_to: list[str] = field(default_factory=list)
    email_username: str = ""
    email_password: str = ""
    email_use_tls: bool = True
    notify_on_success: bool = True
    notify_on_failure: bool = True

    @classmethod
    def from_file(cls, path: str) -> "AlertConfig":
        try:
            with open(path) as f:
                data = json.load(f)
            return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})
        except FileNotFoundError:
            logger.info("No alert config at %s, alerts disabled", path)
            return cls()
        except (OSError, ValueError, TypeError) as e:
            logger.warning("Failed to load alert config: %s", e)
            return cls()

    @property
    def has_destinations(self) -> bool:
        return bool(self.webhooks or (self.email_smtp_host and self.email_to))


def send_webhook(url: str, payload: dict[str, Any]) -> bool:
    """POST JSON payload to a webhook URL."""
    try:
        data = json.dumps(payload, default=str).encode()
        req = urllib.request.Request(
            url, data=data,
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        with urllib.request.urlopen(req, timeout=10) as resp:
            return 200 <= resp.status < 300
    except (urllib.error.URLError, OSError, ValueError) as e:
        logger.error("Webhook failed (%s): %s", url, e)
        return False


def send_email(config: AlertConfig, subject: str, body: str) -> bool:
    """Send an email alert via SMTP."""
    if not config.email_smtp_host or not config.email_to:
        return False
    try:
        msg = MIMEText(body)
        msg["Subject"] = f"[Strongbox] {subject}"
        msg["From"] = config.email_from or "strongbox@localhost"
        msg["To"] = ", ".join(config.email_to)

        with smtplib.SMTP(config.email_smtp_host, config.email_smtp_port, timeout=30) as smtp:
            if config.email_use_tls:
                smtp.starttls()
            if config.email_username:
                smtp.login(config.email_username, config.email_password)
            smtp.send_message(msg)
        return True
    except (smtplib.SMTPException, OSError) as e:
        logger.error("Email send failed: %s", e)
        return False


def dispatch_alert(
    config: AlertConfig,
    alert_type: str,
    title: str,
    details: dict[str, Any] | None = None,
) -> dict:
    """Send alert to all configured destinations.

    Args:
        config: Alert configuration
        alert_type: e.g. "backup_success", "backup_failure"
        title: Human-readable summary
        details: Extra data payload
    """
    payload = {
        "alert_type": alert_type,
        "title": title,
        "details": details or {},
    }

    results: dict[str, Any] = {"webhooks": [], "email": None}

    for url in config.webhooks:
        ok = send_webhook(url, payload)
        results["webhooks"].append({"url": url, "success": ok})

    if config.email_to:
        body_lines = [title, ""]
        if details:
            for k, v in details.items():
                body_lines.append(f"  {k}: {v}")
        ok = send_email(config, title, "\n".join(body_lines))
        results["email"] = {"success": ok, "recipients": config.email_to}

    return results


class BackupNotifier:
    """Sends backup success/failure alerts to the configured destinations."""

    def __init__(self, config: AlertConfig, extra_recipient: str = "", enabled: bool = True) -> None:
        self.config = config
        self.enabled = enabled
        if extra_recipient and extra_recipient not in config.email_to:
            config.email_to = [*config.email_to, extra_recipient]

    def notify(self, result: BackupResult, last_success: str = "Never") -> dict | None:
        """Dispatch an alert for *result*. Returns dispatch results, or None if skipped."""
        if not self.enabled or not self.config.has_destinations:
            logger.debug("No alert destinations configured, skipping backup alert")
            return None

        attempted_at = result.created_at.strftime("%Y-%m-%d %H:%M:%S")
        if result.success:
            if not self.config.notify_on_success:
                return None
            title = "Database backup successful"
            details = {
                "filename": result.filename,
                "file_size": format_size(result.size_bytes or 0),
                "tables_count": result.tables_count,
                "created_at": attempted_at,
                "backup_type": result.kind,
            }
            alert_type = "backup_success"
        else:
            if not self.config.notify_on_failure:
                return None
            title = "Database backup FAILED"
            details = {
                "error": result.error or "Unknown error",
                "attempted_at": attempted_at,
                "backup_type": result.kind,
                "last_successful_backup": last_success,
            }
            alert_type = "backup_failure"

        outcome = dispatch_alert(self.config, alert_type, title, details)
        logger.info("Backup alert %s dispatched: %s", alert_type, outcome)
        return outcome
