"""Shared CLI helpers.

Provides snapshot loading, settings discovery and error exits so that
``cli.py`` and the ``cli_commands/*.py`` modules share one implementation.
"""

from __future__ import annotations

import json as json_mod
import sys
from typing import Any, NoReturn

import click

from trellis.config import EngineSettings, discover_settings, find_trellis_root
from trellis.logging import setup_logging


def get_settings() -> EngineSettings:
    """Discover .trellis/ (if any) and return the resolved engine settings."""
    return discover_settings()


def enable_file_logging() -> None:
    """Log to .trellis/trellis.log when the project has a .trellis/ directory."""
    try:
        trellis_dir = find_trellis_root()
    except FileNotFoundError:
        return  # No .trellis/ dir -- stay on default logging
    setup_logging(trellis_dir)


def load_snapshot(path: str) -> Any:
    """Read a JSON snapshot from ``path`` (``-`` for stdin), exiting on failure."""
    try:
        if path == "-":
            text = sys.stdin.read()
        else:
            with open(path, encoding="utf-8") as fh:
                text = fh.read()
    except OSError as e:
        fail(f"Cannot read {path}: {e}")
    try:
        return json_mod.loads(text)
    except json_mod.JSONDecodeError as e:
        fail(f"Invalid JSON in {path}: {e}")


def fail(message: str, *, as_json: bool = False, code: str | None = None) -> NoReturn:
    """Report an error (stderr, or a JSON object on stdout) and exit 1."""
    if as_json:
        payload: dict[str, Any] = {"error": message}
        if code:
            payload["code"] = code
        click.echo(json_mod.dumps(payload))
    else:
        click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def echo_json(data: Any) -> None:
    click.echo(json_mod.dumps(data, indent=2, default=str))
