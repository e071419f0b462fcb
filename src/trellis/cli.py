"""CLI for the trellis engine.

Works on JSON snapshot files; settings come from the nearest .trellis/
directory (if any) plus TRELLIS_* environment overrides.

Usage:
    trellis phases [TYPE]                         # Show phase sets
    trellis migrate-phase feature execution       # Map a legacy phase label
    trellis readiness item.json                   # Score readiness
    trellis transition item.json launch           # Decide a phase move
    trellis review item.json --action request --role member --target-phase launch
    trellis analyze graph.json                    # Dependency health report
    trellis serve --port 9000                     # HTTP API
"""

from __future__ import annotations

import click

from trellis import __version__
from trellis.cli_commands.dependencies import analyze
from trellis.cli_commands.phase import migrate_phase, phases, readiness, transition
from trellis.cli_commands.review import review
from trellis.cli_commands.server import serve
from trellis.cli_common import enable_file_logging


@click.group()
@click.version_option(version=__version__, prog_name="trellis")
def cli() -> None:
    """Trellis -- work item readiness and dependency analysis."""
    enable_file_logging()


for _command in (phases, migrate_phase, readiness, transition, review, analyze, serve):
    cli.add_command(_command)


if __name__ == "__main__":
    cli()
