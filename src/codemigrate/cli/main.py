"""Click CLI entry point for codemigrate."""

from __future__ import annotations

import click

from codemigrate._version import __version__


@click.group()
@click.version_option(version=__version__, prog_name="codemigrate")
def cli():
    """codemigrate - find and rewrite deprecated code patterns.

    Scan a source tree with regex rules, then preview or apply the fixes.
    """
    pass


# Import and register subcommands
from codemigrate.cli.scan_cmd import scan  # noqa: E402
from codemigrate.cli.rules_cmd import rules  # noqa: E402
from codemigrate.cli.clean_cmd import clean_backups  # noqa: E402

cli.add_command(scan)
cli.add_command(rules)
cli.add_command(clean_backups)


if __name__ == "__main__":
    cli()
