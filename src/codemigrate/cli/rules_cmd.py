"""codemigrate rules command."""

from __future__ import annotations

import sys
from pathlib import Path

import click
from rich.markup import escape

from codemigrate.core.config import load_config
from codemigrate.core.errors import RuleLoadError
from codemigrate.core.output import console, error_console, print_rules, setup_logging
from codemigrate.rules.engine import RuleEngine


@click.command()
@click.option("--rules", "-r", "rules_path", default=None, help="Path to rules configuration file")
@click.option("--verbose", "-v", is_flag=True, help="Show detailed output")
def rules(rules_path: str | None, verbose: bool):
    """List the rules in a rules file and report any that fail to load."""
    setup_logging(verbose)
    config = load_config(Path.cwd())
    engine = RuleEngine()

    try:
        rule_set = engine.load_file(rules_path or config.scan.rules)
    except RuleLoadError as e:
        error_console.print(f"\n  [red]{escape(str(e))}[/red]\n")
        sys.exit(1)

    console.print(f"\n  [bold]{len(rule_set)} active rules[/bold]\n")
    if len(rule_set):
        print_rules(engine.rules)

    if rule_set.rejected:
        console.print(f"\n  [yellow]{len(rule_set.rejected)} rules rejected:[/yellow]")
        for rejected in rule_set.rejected:
            console.print(f"    [red]{escape(rejected.rule_id or '?')}[/red]  {escape(rejected.reason)}")
        console.print()
        sys.exit(1)
