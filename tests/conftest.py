"""Shared pytest fixtures for trellis tests."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest
from click.testing import CliRunner

from tests._snapshots import make_edge, make_node, make_order
from trellis.config import TRELLIS_DIR_NAME, write_config
from trellis.models import WorkItem


@pytest.fixture
def feature_design_record() -> dict[str, Any]:
    """A Feature in design with everything but acceptance criteria filled in."""
    return {
        "id": "feat-1",
        "type": "feature",
        "phase": "design",
        "name": "Checkout redesign",
        "purpose": "Reduce checkout drop-off for mobile users",
        "timelineItemsCount": 2,
        "targetRelease": "v2.0",
        "estimatedHours": 40,
        "priority": "high",
        "businessValue": "Higher conversion",
    }


@pytest.fixture
def feature_design_item(feature_design_record: dict[str, Any]) -> WorkItem:
    return WorkItem.from_dict(feature_design_record)


@pytest.fixture
def chain_snapshot() -> dict[str, list[dict[str, Any]]]:
    """A(2h) then B(3h) then C(1h): C depends on B, B depends on A."""
    return {
        "nodes": [make_node("A", 2), make_node("B", 3), make_node("C", 1)],
        "edges": [make_order("e1", "A", "B"), make_order("e2", "B", "C")],
    }


@pytest.fixture
def cycle_snapshot() -> dict[str, list[dict[str, Any]]]:
    """A depends on B depends on C depends on A, plus an advisory A relates_to C."""
    return {
        "nodes": [make_node("A"), make_node("B"), make_node("C")],
        "edges": [
            make_edge("e1", "A", "B", "dependency"),
            make_edge("e2", "B", "C", "dependency"),
            make_edge("e3", "C", "A", "dependency"),
            make_edge("e4", "A", "C", "relates_to", isBidirectional=True),
        ],
    }


@pytest.fixture
def trellis_project(tmp_path: Path) -> Path:
    """A tmp directory set up as a trellis project (.trellis/ with config).

    Returns the project root (parent of .trellis/).
    """
    trellis_dir = tmp_path / TRELLIS_DIR_NAME
    trellis_dir.mkdir()
    write_config(trellis_dir, {"version": 1})
    return tmp_path


@pytest.fixture
def cli_runner() -> CliRunner:
    return CliRunner()
