"""Review gate route handlers."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fastapi import APIRouter

from starlette.requests import Request

from trellis.api_routes.common import _engine_error_response, _error_response, _parse_json_body
from trellis.models import WorkItem, to_snake
from trellis.review import ReviewActionError, apply_review_action, get_review_blockers
from trellis.validation import sanitize_identifier

logger = logging.getLogger(__name__)

# Codes that describe a malformed request rather than a state conflict.
_BAD_REQUEST_CODES = frozenset({"unknown_action", "unknown_role"})


def create_router() -> APIRouter:
    """Build the APIRouter for review gate endpoints."""
    from fastapi import APIRouter
    from fastapi.responses import JSONResponse

    router = APIRouter()

    @router.post("/review/action")
    async def api_review_action(request: Request) -> JSONResponse:
        """Validate and apply request/approve/reject/cancel on a review gate."""
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body

        params: dict[str, str] = {}
        for key, label in (("work_item_id", "workItemId"), ("target_phase", "targetPhase"), ("action", "action"), ("role", "role")):
            value, err = sanitize_identifier(body.get(key), label)
            if err:
                return _error_response(err, "VALIDATION_ERROR", 400, {"param": label})
            params[key] = value

        raw_item = body.get("work_item") or {}
        if not isinstance(raw_item, dict):
            return _error_response("workItem must be a JSON object", "VALIDATION_ERROR", 400, {"param": "workItem"})
        record = {to_snake(k): v for k, v in raw_item.items()}
        for key in ("type", "phase", "review_enabled", "review_status"):
            if key in body:
                record[key] = body[key]
        record["id"] = params["work_item_id"]
        try:
            item = WorkItem.from_dict(record)
        except ValueError as exc:
            return _engine_error_response(exc)

        try:
            result = apply_review_action(item, params["target_phase"], params["action"], params["role"])
        except ReviewActionError as exc:
            if exc.code == "insufficient_role":
                status = 403
            elif exc.code in _BAD_REQUEST_CODES:
                status = 400
            else:
                status = 409
            return _error_response(
                str(exc),
                exc.code.upper(),
                status,
                {"workItemId": item.id, "action": params["action"], "role": params["role"]},
            )

        payload = dict(result.to_dict())
        # Blockers the gate would report once the caller persists newStatus.
        item.review_status = result.new_status
        payload["reviewBlockers"] = get_review_blockers(item, params["target_phase"])
        return JSONResponse(payload)

    return router
