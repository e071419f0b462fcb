"""Tests for the JSON-lines run log."""

from __future__ import annotations

import json
import logging
import logging.handlers
import os
import threading
from collections.abc import Generator
from pathlib import Path
from time import perf_counter
from typing import Any

import pytest

from tests._snapshots import make_edge, make_node
from trellis.analysis import analyze_graph
from trellis.logging import LOG_FILENAME, elapsed_ms, setup_logging


@pytest.fixture(autouse=True)
def _reset_trellis_logger() -> Generator[None, None, None]:
    """Clean up the trellis logger handlers between tests."""
    yield
    logger = logging.getLogger("trellis")
    for handler in logger.handlers[:]:
        handler.close()
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)


def _records(logger: logging.Logger, trellis_dir: Path) -> list[dict[str, Any]]:
    for handler in logger.handlers:
        handler.flush()
    lines = (trellis_dir / LOG_FILENAME).read_text().strip().splitlines()
    return [json.loads(line) for line in lines]


class TestRecordShape:
    def test_base_keys(self, tmp_path: Path) -> None:
        logger = setup_logging(tmp_path)
        logging.getLogger("trellis.graph").warning("Snapshot input issue")
        record = _records(logger, tmp_path)[-1]
        assert record["level"] == "warning"
        assert record["source"] == "trellis.graph"
        assert record["event"] == "Snapshot input issue"
        assert record["time"].endswith("+00:00")

    def test_context_fields_are_emitted(self, tmp_path: Path) -> None:
        logger = setup_logging(tmp_path)
        logger.info(
            "Review approve",
            extra={"operation": "review_action", "work_item": "feat-1", "phase": "build", "duration_ms": 1.5},
        )
        record = _records(logger, tmp_path)[-1]
        assert record["operation"] == "review_action"
        assert record["work_item"] == "feat-1"
        assert record["phase"] == "build"
        assert record["duration_ms"] == 1.5

    def test_absent_context_is_omitted(self, tmp_path: Path) -> None:
        logger = setup_logging(tmp_path)
        logger.info("plain")
        record = _records(logger, tmp_path)[-1]
        assert set(record) == {"time", "level", "source", "event"}

    def test_exception_carries_type(self, tmp_path: Path) -> None:
        logger = setup_logging(tmp_path)
        try:
            raise ValueError("boom")
        except ValueError:
            logger.exception("failed")
        record = _records(logger, tmp_path)[-1]
        assert record["error"] == "ValueError: boom"

    def test_analysis_run_is_recorded(self, tmp_path: Path) -> None:
        logger = setup_logging(tmp_path)
        analyze_graph([make_node("A"), make_node("B")], [make_edge("e1", "A", "B")])
        record = next(r for r in _records(logger, tmp_path) if r.get("operation") == "analyze_graph")
        assert record["counts"]["nodes"] == 2
        assert record["counts"]["cycles"] == 0
        assert record["duration_ms"] >= 0

    def test_debug_hidden_at_default_level(self, tmp_path: Path) -> None:
        logger = setup_logging(tmp_path)
        logger.debug("noise")
        logger.info("kept")
        assert [r["event"] for r in _records(logger, tmp_path)] == ["kept"]


class TestElapsedMs:
    def test_non_negative_and_rounded(self) -> None:
        value = elapsed_ms(perf_counter())
        assert value >= 0
        assert round(value, 2) == value


class TestSetupLogging:
    def test_idempotent_setup(self, tmp_path: Path) -> None:
        logger1 = setup_logging(tmp_path)
        logger2 = setup_logging(tmp_path)
        assert logger1 is logger2
        assert len(logger1.handlers) == 1

    def test_level_is_applied(self, tmp_path: Path) -> None:
        logger = setup_logging(tmp_path, level=logging.DEBUG)
        logger.debug("visible")
        assert _records(logger, tmp_path)[-1]["event"] == "visible"

    def test_new_directory_replaces_handler(self, tmp_path: Path) -> None:
        first = tmp_path / "one"
        second = tmp_path / "two"
        first.mkdir()
        second.mkdir()
        setup_logging(first)
        logger = setup_logging(second)
        assert len(logger.handlers) == 1
        handler = logger.handlers[0]
        assert isinstance(handler, logging.handlers.RotatingFileHandler)
        assert handler.baseFilename == os.path.abspath(str(second / LOG_FILENAME))

    def test_no_duplicate_handlers_via_symlink(self, tmp_path: Path) -> None:
        real_dir = tmp_path / "real"
        real_dir.mkdir()
        link_dir = tmp_path / "link"
        os.symlink(str(real_dir), str(link_dir))
        logger = setup_logging(link_dir)
        setup_logging(link_dir)
        assert len(logger.handlers) == 1

    def test_no_duplicate_handlers_under_concurrency(self, tmp_path: Path) -> None:
        results: list[logging.Logger] = []
        barrier = threading.Barrier(4)

        def call_setup() -> None:
            barrier.wait()
            results.append(setup_logging(tmp_path))

        threads = [threading.Thread(target=call_setup) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(results) == 4
        assert all(r is results[0] for r in results)
        assert len(logging.getLogger("trellis").handlers) == 1

