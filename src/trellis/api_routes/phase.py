"""Phase model, readiness, and transition route handlers."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from fastapi import APIRouter

from starlette.requests import Request

from trellis.api_routes.common import (
    _engine_error_response,
    _error_response,
    _parse_json_body,
    _require_list,
    _work_item_from_body,
)
from trellis.config import EngineSettings
from trellis.models import to_snake
from trellis.phases import (
    LEGACY_FEATURE_PHASES,
    WorkItemType,
    get_phase_set,
    parse_work_item_type,
    phase_distribution,
)
from trellis.readiness import calculate_readiness_batch, readiness_for_item
from trellis.review import REVIEW_CONFIG
from trellis.transitions import decide_transition
from trellis.validation import sanitize_identifier

logger = logging.getLogger(__name__)


def _phase_model(item_type: WorkItemType) -> dict[str, Any]:
    ps = get_phase_set(item_type)
    return {
        "type": ps.type.value,
        "phases": list(ps.phases),
        "order": list(ps.order),
        "terminals": sorted(ps.terminals),
        "initial": ps.initial,
        "legacyPhases": LEGACY_FEATURE_PHASES if item_type is WorkItemType.FEATURE else {},
        "reviewablePhases": sorted(REVIEW_CONFIG.reviewable_phases.get(item_type, frozenset())),
        "reviewGatedPhases": sorted(REVIEW_CONFIG.blocked_phases.get(item_type, frozenset())),
    }


def create_router() -> APIRouter:
    """Build the APIRouter for phase model, readiness, and transition endpoints."""
    from fastapi import APIRouter, Depends
    from fastapi.responses import JSONResponse

    from trellis.api import _get_settings

    router = APIRouter()

    @router.get("/phases")
    async def api_phases() -> JSONResponse:
        """Phase sets for every work item type."""
        return JSONResponse({"types": {wt.value: _phase_model(wt) for wt in WorkItemType}})

    @router.get("/phases/{type_name}")
    async def api_phases_for_type(type_name: str) -> JSONResponse:
        try:
            item_type = parse_work_item_type(type_name)
        except ValueError as exc:
            return _engine_error_response(exc)
        return JSONResponse(_phase_model(item_type))

    @router.post("/phase/readiness")
    async def api_readiness(request: Request, settings: EngineSettings = Depends(_get_settings)) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        item = _work_item_from_body(body)
        if isinstance(item, JSONResponse):
            return item
        try:
            result = readiness_for_item(item, settings=settings.readiness)
        except ValueError as exc:
            return _engine_error_response(exc)
        return JSONResponse(result.to_dict())

    @router.post("/phase/readiness/batch")
    async def api_readiness_batch(
        request: Request, settings: EngineSettings = Depends(_get_settings)
    ) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        items = _require_list(body, "work_items", "workItems")
        if isinstance(items, JSONResponse):
            return items
        batch = calculate_readiness_batch(items, settings=settings.readiness)
        return JSONResponse(batch.to_dict())

    @router.post("/phase/transition")
    async def api_transition(request: Request, settings: EngineSettings = Depends(_get_settings)) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        to_phase, err = sanitize_identifier(body.get("to_phase"), "toPhase")
        if err:
            return _error_response(err, "VALIDATION_ERROR", 400, {"param": "toPhase"})
        item = _work_item_from_body(body)
        if isinstance(item, JSONResponse):
            return item
        decision = decide_transition(item, to_phase, settings=settings.readiness)
        return JSONResponse(decision.to_dict())

    @router.post("/phase/distribution")
    async def api_distribution(request: Request) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        items = _require_list(body, "work_items", "workItems")
        if isinstance(items, JSONResponse):
            return items
        pairs: list[tuple[str, str]] = []
        for index, raw in enumerate(items):
            if not isinstance(raw, dict):
                return _error_response(f"workItems[{index}] must be a JSON object", "VALIDATION_ERROR", 400)
            record = {to_snake(k): v for k, v in raw.items()}
            pairs.append((record.get("type"), record.get("phase")))
        try:
            return JSONResponse(phase_distribution(pairs))
        except ValueError as exc:
            return _engine_error_response(exc)

    return router
