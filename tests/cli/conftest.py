"""Fixtures for CLI interface tests."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import pytest


@pytest.fixture
def write_json(tmp_path: Path) -> Callable[[str, Any], str]:
    """Write a JSON snapshot into tmp_path and return its path as a string."""

    def _write(name: str, data: Any) -> str:
        path = tmp_path / name
        path.write_text(json.dumps(data))
        return str(path)

    return _write


@pytest.fixture
def in_project(trellis_project: Path, monkeypatch: pytest.MonkeyPatch) -> Generator[Path, None, None]:
    """Run the CLI from inside a trellis project (cwd = project root).

    The CLI attaches a file handler for .trellis/trellis.log; it is removed
    afterwards so later tests do not write into a stale tmp dir.
    """
    monkeypatch.chdir(trellis_project)
    yield trellis_project
    logger = logging.getLogger("trellis")
    for handler in logger.handlers[:]:
        handler.close()
        logger.removeHandler(handler)
