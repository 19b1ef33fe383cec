"""codemigrate scan command."""

from __future__ import annotations

import sys
from pathlib import Path

import click
from rich.markup import escape
from rich.prompt import Confirm

from codemigrate.core.config import CodeMigrateConfig, load_config, parse_file_size
from codemigrate.core.errors import ErrorClassifier, FixAbortedError, RuleLoadError, ScanAbortedError
from codemigrate.core.models import Finding, FixResult
from codemigrate.core.output import (
    configure_console,
    console,
    error_console,
    get_progress,
    print_error_summary,
    print_findings,
    print_fix_result,
    print_scan_report,
    setup_logging,
)
from codemigrate.fix.engine import FixEngine
from codemigrate.rules.engine import RuleEngine
from codemigrate.scanner.engine import Scanner


@click.command()
@click.argument("directory", type=click.Path(file_okay=False, path_type=Path))
@click.option("--rules", "-r", "rules_path", default=None, help="Path to rules configuration file")
@click.option("--fix", "-f", "apply_fix", is_flag=True, help="Automatically fix issues where possible")
@click.option("--dry-run", "-d", is_flag=True, help="Show what would be fixed without making changes")
@click.option("--verbose", "-v", is_flag=True, help="Show detailed output")
@click.option("--no-color", is_flag=True, help="Disable colored output")
@click.option("--extensions", "-e", default=None, help="File extensions to scan (comma-separated)")
@click.option("--ignore", "-i", multiple=True, help="Glob pattern to ignore (repeatable)")
@click.option("--max-file-size", default=None, help="Maximum file size to process (e.g. 1MB, 500KB)")
@click.option("--backup-dir", default=None, help="Directory for backup files")
@click.option("--no-backup", is_flag=True, help="Skip creating backups before fixing")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompts")
@click.option("--regex-timeout", type=int, default=None, help="Per-rule regex timeout in milliseconds")
def scan(
    directory: Path,
    rules_path: str | None,
    apply_fix: bool,
    dry_run: bool,
    verbose: bool,
    no_color: bool,
    extensions: str | None,
    ignore: tuple[str, ...],
    max_file_size: str | None,
    backup_dir: str | None,
    no_backup: bool,
    yes: bool,
    regex_timeout: int | None,
):
    """Scan DIRECTORY for deprecated patterns and optionally fix them."""
    configure_console(no_color)
    setup_logging(verbose)

    config = load_config(Path.cwd())
    _apply_overrides(config, rules_path, extensions, ignore, max_file_size, backup_dir, regex_timeout)

    classifier = ErrorClassifier(
        memory_warning_mb=config.memory.warning_mb,
        memory_critical_mb=config.memory.critical_mb,
    )
    engine = RuleEngine(
        classifier,
        regex_timeout_ms=config.scan.regex_timeout_ms,
        max_matches=config.scan.max_matches,
    )

    try:
        rule_set = engine.load_file(config.scan.rules)
    except RuleLoadError as e:
        error_console.print(f"\n  [red]{escape(str(e))}[/red]\n")
        sys.exit(1)

    console.print(f"\n  [bold]codemigrate[/bold]  Initialized with {len(rule_set)} rules")
    if rule_set.rejected:
        console.print(f"  [yellow]{len(rule_set.rejected)} rules were skipped (see warnings above)[/yellow]")

    scanner = Scanner(engine, config, classifier)
    try:
        with get_progress() as progress:
            task = progress.add_task(f"Scanning {directory}...", total=None)
            report = scanner.run(directory)
            progress.update(task, completed=True)
    except (FileNotFoundError, NotADirectoryError, ScanAbortedError) as e:
        error_console.print(f"\n  [red]File discovery failed: {escape(str(e))}[/red]\n")
        sys.exit(1)

    print_findings(report.findings, report.target)

    fix_result = None
    aborted = False
    if apply_fix or dry_run:
        fix_result, aborted = _run_fixes(report.findings, config, engine, classifier, dry_run, no_backup, yes)

    console.print()
    print_scan_report(report, fix_result)

    summary = classifier.summary()
    print_error_summary(summary)

    failed = (
        report.error_count > 0
        or summary.has_critical_errors
        or aborted
        or (fix_result is not None and fix_result.has_unrecoverable_errors)
    )
    if failed:
        sys.exit(1)


def _apply_overrides(
    config: CodeMigrateConfig,
    rules_path: str | None,
    extensions: str | None,
    ignore: tuple[str, ...],
    max_file_size: str | None,
    backup_dir: str | None,
    regex_timeout: int | None,
) -> None:
    if rules_path:
        config.scan.rules = rules_path
    if extensions:
        config.scan.extensions = [ext.strip() for ext in extensions.split(",") if ext.strip()]
    if ignore:
        config.exclude = config.exclude + list(ignore)
    if max_file_size:
        config.scan.max_file_size = parse_file_size(max_file_size)
    if backup_dir:
        config.fix.backup_dir = backup_dir
    if regex_timeout is not None:
        config.scan.regex_timeout_ms = regex_timeout


def _run_fixes(
    findings: list[Finding],
    config: CodeMigrateConfig,
    engine: RuleEngine,
    classifier: ErrorClassifier,
    dry_run: bool,
    no_backup: bool,
    yes: bool,
) -> tuple[FixResult | None, bool]:
    """Apply (or simulate) the fixes. Returns the result and whether the run aborted."""
    fixable = [f for f in findings if f.fixable]
    if not fixable:
        console.print("\n  No fixable issues found.")
        return None, False

    fix_engine = FixEngine.from_config(
        config, Path.cwd(), classifier, dry_run=dry_run, rule_set=engine.rule_set
    )

    console.print()
    if dry_run:
        console.print(f"  [bold]Dry run:[/bold] would fix {len(fixable)} issues")
    else:
        affected = len({f.file_path for f in fixable})
        console.print(f"  About to fix {len(fixable)} issues in {affected} file(s).")
        if not no_backup:
            console.print(f"  [dim]Backups saved to {fix_engine.backups.backup_dir}[/dim]")
        if not yes and not Confirm.ask("  Apply these fixes?", default=False):
            console.print("  [dim]Cancelled.[/dim]")
            return None, False

    try:
        result = fix_engine.apply_fixes(
            fixable,
            backup_before_fix=config.fix.backup_before_fix and not no_backup,
            continue_on_error=config.fix.continue_on_error,
        )
    except FixAbortedError as e:
        error_console.print(f"\n  [red]{escape(str(e))}[/red]")
        if e.rollback is not None:
            error_console.print(
                f"  [yellow]Rolled back {e.rollback.files_restored} files"
                f" ({len(e.rollback.errors)} could not be restored)[/yellow]"
            )
        return e.result, True

    print_fix_result(result)
    fix_engine.end_session()
    return result, False
