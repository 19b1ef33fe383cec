"""Rich terminal formatting for codemigrate output."""

from __future__ import annotations

import logging
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from codemigrate.core.models import (
    ErrorSummary,
    Finding,
    FixResult,
    Rule,
    ScanReport,
    Severity,
)

console = Console()
error_console = Console(stderr=True)


SEVERITY_ICONS = {
    Severity.ERROR: "[red]●[/red]",
    Severity.WARNING: "[yellow]●[/yellow]",
    Severity.INFO: "[blue]●[/blue]",
}

SEVERITY_COLORS = {
    Severity.ERROR: "red",
    Severity.WARNING: "yellow",
    Severity.INFO: "blue",
}


def configure_console(no_color: bool = False) -> None:
    """Switch both consoles to plain output when colour is disabled."""
    console.no_color = no_color
    error_console.no_color = no_color


def setup_logging(verbose: bool = False) -> None:
    """Route codemigrate log records through the rich stderr console."""
    logger = logging.getLogger("codemigrate")
    logger.handlers.clear()
    handler = RichHandler(console=error_console, show_time=False, show_path=False, markup=False)
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    logger.propagate = False


def format_duration(ms: int) -> str:
    if ms < 1000:
        return f"{ms}ms"
    if ms < 60_000:
        return f"{ms / 1000:.1f}s"
    return f"{ms // 60_000}m {(ms % 60_000) // 1000}s"


def _relative(path: Path, base: Path | None) -> str:
    if base is None:
        return str(path)
    try:
        return str(path.relative_to(base))
    except ValueError:
        return str(path)


def format_finding(finding: Finding, base: Path | None = None) -> str:
    """Format a single finding for terminal output."""
    icon = SEVERITY_ICONS.get(finding.severity, "●")
    fix_label = " [dim](fixable)[/dim]" if finding.fixable else ""
    location = f"{_relative(finding.file_path, base)}:{finding.line}:{finding.column}"
    return (
        f"  {icon} {finding.rule_id}  {escape(finding.rule_name or finding.description)}{fix_label}\n"
        f"     {location}  [dim]{escape(finding.matched_text.strip()[:80])}[/dim]"
    )


def print_findings(findings: list[Finding], base: Path | None = None) -> None:
    """Print findings grouped by file, in the order they were produced."""
    if not findings:
        console.print("  [green]No issues found![/green]")
        return

    by_file: dict[Path, list[Finding]] = {}
    for finding in findings:
        by_file.setdefault(finding.file_path, []).append(finding)

    for file_path, file_findings in by_file.items():
        console.print(f"\n  [bold]{escape(_relative(file_path, base))}[/bold]")
        for finding in sorted(file_findings, key=lambda f: (f.line, f.column)):
            console.print(format_finding(finding, base))


def print_scan_report(report: ScanReport, fix_result: FixResult | None = None) -> None:
    """Print the run summary panel."""
    color = "red" if report.error_count else "yellow" if report.warning_count else "green"

    lines = []
    lines.append("")
    lines.append(f"  Files scanned:   {report.files_scanned}")
    if report.files_skipped:
        lines.append(f"  Files skipped:   [yellow]{report.files_skipped}[/yellow]")
    lines.append(f"  Issues found:    {len(report.findings)}")
    lines.append(
        f"    [red]{report.error_count} errors[/red] | "
        f"[yellow]{report.warning_count} warnings[/yellow] | "
        f"[blue]{report.info_count} info[/blue]"
    )
    lines.append(f"  Fixable:         {report.fixable_count}")

    if fix_result is not None:
        verb = "would be" if fix_result.dry_run else "were"
        lines.append("")
        lines.append(
            f"  {fix_result.patterns_replaced} patterns {verb} replaced "
            f"in {fix_result.files_fixed} files"
        )
        if fix_result.backups_created:
            lines.append(f"  Backups created: {len(fix_result.backups_created)}")
        if fix_result.errors:
            lines.append(f"  [red]{len(fix_result.errors)} files could not be fixed[/red]")

    lines.append("")
    lines.append(f"  [dim]Completed in {format_duration(report.elapsed_ms)}[/dim]")

    console.print(Panel(
        "\n".join(lines),
        title="[bold]Code Migration Report[/bold]",
        border_style=color,
        padding=(0, 1),
    ))


def print_fix_result(result: FixResult) -> None:
    """Print the outcome of a fix session."""
    if result.dry_run:
        console.print(
            f"  [green]Dry run completed: {result.patterns_replaced} patterns would be replaced[/green]"
        )
    else:
        console.print(
            f"  [green]Fixed {result.files_fixed} files, replaced {result.patterns_replaced} patterns[/green]"
        )
        if result.backups_created:
            console.print(f"  [dim]Created {len(result.backups_created)} backup files[/dim]")

    if result.errors:
        console.print(f"  [yellow]{len(result.errors)} files could not be fixed:[/yellow]")
        for error in result.errors:
            console.print(f"    [red]{escape(error.file_path or '')}[/red]  {escape(error.message)}")


def print_error_summary(summary: ErrorSummary) -> None:
    """Print the per-category error table."""
    if not summary.has_errors:
        return

    table = Table(title="Error Summary", show_header=True, header_style="bold")
    table.add_column("Category")
    table.add_column("Count", justify="right")
    for error_type, count in summary.by_type.items():
        if count > 0:
            table.add_row(error_type, str(count))
    console.print(table)

    if summary.has_critical_errors:
        console.print(
            "  [yellow]Critical errors detected. Some rules or files may have been skipped.[/yellow]"
        )


def print_rules(rules: list[Rule]) -> None:
    table = Table(show_header=True, header_style="bold")
    table.add_column("ID")
    table.add_column("Severity")
    table.add_column("File types")
    table.add_column("Fixable")
    table.add_column("Description")
    for rule in rules:
        color = SEVERITY_COLORS[rule.severity]
        table.add_row(
            escape(rule.id),
            f"[{color}]{rule.severity.value}[/{color}]",
            ", ".join(sorted(rule.file_types)),
            "yes" if rule.fixable else "no",
            escape(rule.description),
        )
    console.print(table)


def get_progress() -> Progress:
    """Create a progress instance for scanning."""
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        console=console,
        transient=True,
    )
