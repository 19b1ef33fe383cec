"""codemigrate clean-backups command."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import click
from rich.markup import escape

from codemigrate.core.config import load_config
from codemigrate.core.output import console, setup_logging
from codemigrate.fix.backup import BackupManager


@click.command("clean-backups")
@click.option("--backup-dir", default=None, help="Directory holding backup files")
@click.option("--max-age-days", type=int, default=None, help="Delete backups older than this many days")
@click.option("--verbose", "-v", is_flag=True, help="Show detailed output")
def clean_backups(backup_dir: str | None, max_age_days: int | None, verbose: bool):
    """Delete old backup files left behind by earlier fix runs."""
    setup_logging(verbose)
    project_path = Path.cwd()
    config = load_config(project_path)

    manager = BackupManager(
        backup_dir=backup_dir or config.fix.backup_dir,
        max_backup_age=timedelta(days=max_age_days if max_age_days is not None else config.fix.max_backup_age_days),
        base_path=project_path,
    )
    result = manager.cleanup_old_backups()

    if result.files_deleted:
        console.print(f"\n  [green]Deleted {result.files_deleted} old backup files[/green]")
    else:
        console.print("\n  No old backups to delete.")

    for error in result.errors:
        console.print(f"  [red]{escape(error.message)}[/red]")
    console.print()
