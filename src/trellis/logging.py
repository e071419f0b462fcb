"""JSON-lines run log for trellis.

Each record becomes one JSON object in ``.trellis/trellis.log`` (rotated at
5MB, 3 backups). Engine and API code attach structured context through
``extra=`` using the keys in :data:`CONTEXT_FIELDS`:

``operation``
    What ran: ``analyze_graph``, ``readiness_batch``, ``review_action``,
    ``http_request``.
``work_item`` / ``phase``
    The work item and target phase a review or transition concerns.
``counts``
    Summary numbers of the run (nodes, cycles, scored items...).
``http``
    ``{"method", "path", "status"}`` for API requests.
``duration_ms``
    Wall time of the operation, see :func:`elapsed_ms`.
"""

from __future__ import annotations

import json
import logging
import os
import threading
import time
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

LOG_FILENAME = "trellis.log"
CONTEXT_FIELDS = ("operation", "work_item", "phase", "counts", "http", "duration_ms")

_PACKAGE_LOGGER = "trellis"
_MAX_BYTES = 5 * 1024 * 1024
_BACKUP_COUNT = 3
_setup_lock = threading.Lock()


def elapsed_ms(started: float) -> float:
    """Milliseconds since ``started`` (a :func:`time.perf_counter` reading)."""
    return round((time.perf_counter() - started) * 1000, 2)


class RunRecordFormatter(logging.Formatter):
    """Render a record as ``{"time", "level", "source", "event", ...context}``."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "time": datetime.fromtimestamp(record.created, UTC).isoformat(timespec="milliseconds"),
            "level": record.levelname.lower(),
            "source": record.name,
            "event": record.getMessage(),
        }
        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = value
        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            entry["error"] = f"{type(exc).__name__}: {exc}"
        return json.dumps(entry, default=str)


def _file_handlers(logger: logging.Logger) -> list[RotatingFileHandler]:
    return [h for h in logger.handlers if isinstance(h, RotatingFileHandler)]


def setup_logging(trellis_dir: Path, *, level: int = logging.INFO) -> logging.Logger:
    """Route the ``trellis`` package logger to ``<trellis_dir>/trellis.log``.

    Repeated calls for the same file reuse the existing handler; a call for a
    different project directory replaces it.
    """
    logger = logging.getLogger(_PACKAGE_LOGGER)
    target = os.path.abspath(str(trellis_dir / LOG_FILENAME))

    with _setup_lock:
        logger.setLevel(level)
        stale = [h for h in _file_handlers(logger) if h.baseFilename != target]
        for h in stale:
            logger.removeHandler(h)
            h.close()
        if _file_handlers(logger):
            return logger

        handler = RotatingFileHandler(target, maxBytes=_MAX_BYTES, backupCount=_BACKUP_COUNT)
        handler.setFormatter(RunRecordFormatter())
        logger.addHandler(handler)
    return logger
