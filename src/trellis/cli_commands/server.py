"""CLI commands for the HTTP API: serve."""

from __future__ import annotations

import sys

import click


@click.command()
@click.option("--port", default=8378, type=int, help="Server port (default 8378)")
def serve(port: int) -> None:
    """Serve the HTTP API (requires trellis[api])."""
    try:
        import fastapi  # noqa: F401
        import uvicorn  # noqa: F401
    except ImportError:
        click.echo('The API requires extra dependencies. Install with: pip install "trellis[api]"', err=True)
        sys.exit(1)

    from trellis.api import main as api_main

    api_main(port=port)
