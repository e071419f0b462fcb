"""Shared helpers for API route modules."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from fastapi.responses import JSONResponse
    from starlette.requests import Request

from trellis.models import WorkItem, to_snake
from trellis.phases import UnknownPhaseError, UnknownWorkItemTypeError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _error_response(
    message: str,
    code: str,
    status_code: int,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    """Return a structured error response and log the error."""
    from fastapi.responses import JSONResponse

    logger.warning("API error [%s] %s: %s", status_code, code, message)
    return JSONResponse(
        {"error": {"message": message, "code": code, "details": details or {}}},
        status_code=status_code,
    )


async def _parse_json_body(request: Request) -> dict[str, Any] | JSONResponse:
    """Parse a JSON object body with snake_case keys, returning 400 on failure.

    Only top-level keys are normalized; nested records are normalized by the
    engine when they are ingested.
    """
    import json

    try:
        body = await request.json()
    except (json.JSONDecodeError, ValueError, UnicodeDecodeError):
        return _error_response("Invalid JSON body", "VALIDATION_ERROR", 400)
    if not isinstance(body, dict):
        return _error_response("Request body must be a JSON object", "VALIDATION_ERROR", 400)
    return {to_snake(k): v for k, v in body.items()}


def _engine_error_response(exc: ValueError) -> JSONResponse:
    """Map an engine configuration/input error onto the error envelope."""
    if isinstance(exc, UnknownPhaseError):
        return _error_response(
            str(exc), "UNKNOWN_PHASE", 422, {"type": exc.type_name, "phase": exc.phase}
        )
    if isinstance(exc, UnknownWorkItemTypeError):
        return _error_response(str(exc), "UNKNOWN_TYPE", 422, {"type": exc.type_name})
    return _error_response(str(exc), "VALIDATION_ERROR", 400)


def _require_list(body: dict[str, Any], key: str, label: str) -> list[Any] | JSONResponse:
    value = body.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        return _error_response(f"{label} must be a JSON array", "VALIDATION_ERROR", 400, {"param": label})
    return value


def _work_item_from_body(body: dict[str, Any]) -> WorkItem | JSONResponse:
    """Build a WorkItem from ``workItem`` plus optional top-level overrides.

    ``type``, ``currentPhase``, ``timelineItemsCount`` and ``feedbackStats``
    at the top level take precedence over the same keys inside ``workItem``.
    """
    raw = body.get("work_item")
    if not isinstance(raw, dict):
        return _error_response("workItem must be a JSON object", "VALIDATION_ERROR", 400, {"param": "workItem"})
    record = {to_snake(k): v for k, v in raw.items()}
    overrides = {
        "type": body.get("type"),
        "phase": body.get("current_phase"),
        "timeline_items_count": body.get("timeline_items_count"),
        "feedback_stats": body.get("feedback_stats"),
    }
    record.update({k: v for k, v in overrides.items() if v is not None})
    # Readiness can be asked for an unsaved item, so the id is optional here.
    record.setdefault("id", "unsaved")
    try:
        return WorkItem.from_dict(record)
    except ValueError as exc:
        return _engine_error_response(exc)
