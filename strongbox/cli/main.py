"""strongbox CLI — create, list and prune database backups from the terminal or cron."""

from __future__ import annotations

import sys
from contextlib import contextmanager
from typing import Iterator, Optional

import click

from ..config import settings


@contextmanager
def _controller() -> Iterator:
    from ..common import init_logging
    from ..db import SessionLocal, init_db
    from ..services.backup import get_backup_controller

    init_db()
    init_logging("strongbox-cli")
    db = SessionLocal()
    try:
        yield get_backup_controller(db)
    finally:
        db.close()


@click.group()
@click.version_option(version=settings.app_version, prog_name="strongbox")
def cli():
    """Strongbox — database backups with retention."""
    pass


@cli.command()
def status():
    """Show backup directory health and the newest backup."""
    from rich.console import Console

    console = Console()
    console.print(f"[bold blue]Strongbox[/] v{settings.app_version}")
    console.print(f"Database: {settings.effective_database_url}")
    console.print(f"Environment: {settings.environment}")

    with _controller() as controller:
        console.print(f"Backup directory: {controller.store.directory}")
        summary = controller.status()

    style = {"healthy": "green", "warning": "yellow", "error": "red"}[summary.status]
    console.print(f"Status: [{style}]{summary.status}[/] — {summary.status_message}")
    console.print(f"Backups: {summary.total_backups} ({summary.total_size})")
    if summary.latest_backup:
        console.print(f"Latest: {summary.latest_backup.filename}")


@cli.command()
def serve():
    """Start the Strongbox API server."""
    import uvicorn
    uvicorn.run(
        "strongbox.app:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


# ---------------------------------------------------------------------------
# Backup commands
# ---------------------------------------------------------------------------


@cli.group()
def backup():
    """Manage database backups."""
    pass


@backup.command("create")
@click.option("--structure", is_flag=True, help="Dump table structure only, no rows")
def backup_create(structure: bool):
    """Create a new backup in the backup directory."""
    from ..common import print_error, print_success
    from ..services.storage import format_size

    with _controller() as controller:
        result = controller.create_backup("structure" if structure else "full")

    if not result.success:
        print_error(f"Backup failed: {result.error}")
        sys.exit(1)
    print_success(
        f"Created {result.filename} ({format_size(result.size_bytes or 0)}, "
        f"{result.tables_count} tables)"
    )


@backup.command("list")
def backup_list():
    """List existing backups, newest first."""
    from rich.console import Console
    from rich.table import Table

    from ..common import print_error
    from ..services.storage import format_size

    console = Console()
    with _controller() as controller:
        listing = controller.list_backups()

    if not listing.success:
        print_error(f"Cannot list backups: {listing.error}")
        sys.exit(1)
    if not listing.backups:
        console.print("[dim]No backups found.[/dim]")
        return

    table = Table(title="Backups")
    table.add_column("Filename", style="cyan")
    table.add_column("Type")
    table.add_column("Size", justify="right")
    table.add_column("Created (UTC)")
    table.add_column("Age (days)", justify="right")
    for b in listing.backups:
        table.add_row(
            b.filename, b.kind, format_size(b.size_bytes),
            b.created_at.strftime("%Y-%m-%d %H:%M:%S"), str(b.age_days),
        )
    console.print(table)
    console.print(f"{listing.total_count} backups, {listing.total_size_human} total")


@backup.command("delete")
@click.argument("filename")
@click.option("--yes", is_flag=True, help="Skip confirmation")
def backup_delete(filename: str, yes: bool):
    """Delete a single backup file."""
    from ..common import print_error, print_success

    if not yes:
        click.confirm(f"Delete backup {filename}?", abort=True)

    with _controller() as controller:
        result = controller.delete_backup(filename)

    if not result.success:
        print_error(f"Delete failed: {result.error}")
        sys.exit(1)
    print_success(f"Deleted {filename}")


@backup.command("cleanup")
@click.option("--retention-days", type=click.IntRange(min=0), default=None,
              help="Delete backups older than this many days")
@click.option("--max-files", type=click.IntRange(min=1), default=None,
              help="Keep at most this many newest backups")
def backup_cleanup(retention_days: Optional[int], max_files: Optional[int]):
    """Prune old backups according to the retention policy."""
    from ..api.schemas import RetentionPolicy
    from ..common import print_error, print_success, print_warning

    with _controller() as controller:
        base = controller.config.policy
        policy = RetentionPolicy(
            retention_days=base.retention_days if retention_days is None else retention_days,
            max_files=base.max_files if max_files is None else max_files,
        )
        result = controller.cleanup_old_backups(policy)

    if not result.success:
        print_error(f"Cleanup failed: {result.error}")
        sys.exit(1)
    for err in result.errors:
        print_warning(err)
    print_success(f"{result.message}, freed {result.size_freed}")


@backup.command("auto")
def backup_auto():
    """Scheduled backup for cron: full backup, prune, notify."""
    from ..common import print_error, print_success

    with _controller() as controller:
        result = controller.auto_backup()

    if not result.success:
        print_error(f"Automatic backup failed: {result.error}")
        sys.exit(1)
    print_success(f"Automatic backup created: {result.filename}")


if __name__ == "__main__":
    cli()
