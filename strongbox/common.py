"""Shared utilities — console output and file logging.

Used by the CLI and the API lifespan. Services log through the standard
``logging`` module and never print.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from rich.console import Console

# ---------------------------------------------------------------------------
# Console singleton
# ---------------------------------------------------------------------------
console = Console()

# ---------------------------------------------------------------------------
# Timestamp for log file naming
# ---------------------------------------------------------------------------
TIMESTAMP = datetime.now().strftime("%Y-%m-%d-%H%M%S")

# ---------------------------------------------------------------------------
# Display helpers
# ---------------------------------------------------------------------------


def print_success(msg: str) -> None:
    console.print(f"[bold green]✔ {msg}[/bold green]")


def print_warning(msg: str) -> None:
    console.print(f"[bold yellow]⚠ {msg}[/bold yellow]")


def print_error(msg: str) -> None:
    console.print(f"[bold red]✖ {msg}[/bold red]")


# ---------------------------------------------------------------------------
# File-based logging
# ---------------------------------------------------------------------------

_log_file: Optional[Path] = None


def init_logging(prefix: str = "strongbox", log_dir: Optional[Path] = None) -> Path:
    """Attach a timestamped file handler to the ``strongbox`` logger. Returns the log file path."""
    global _log_file

    if _log_file is not None:
        return _log_file

    if log_dir is None:
        from .config import settings
        log_dir = settings.local_dir / "logs"

    log_dir.mkdir(parents=True, exist_ok=True)
    _log_file = log_dir / f"{prefix}-{TIMESTAMP}.log"

    logger = logging.getLogger("strongbox")
    logger.setLevel(logging.DEBUG)
    fh = logging.FileHandler(_log_file)
    fh.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    logger.addHandler(fh)
    return _log_file
