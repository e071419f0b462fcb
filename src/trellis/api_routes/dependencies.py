"""Dependency graph analysis route handlers."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fastapi import APIRouter

from starlette.requests import Request

from trellis.analysis import analyze_graph
from trellis.api_routes.common import _error_response, _parse_json_body, _require_list
from trellis.config import EngineSettings
from trellis.graph import DependencyGraph
from trellis.validation import sanitize_identifier

logger = logging.getLogger(__name__)


def create_router() -> APIRouter:
    """Build the APIRouter for dependency analysis endpoints."""
    from fastapi import APIRouter, Depends
    from fastapi.responses import JSONResponse

    from trellis.api import _get_settings

    router = APIRouter()

    @router.post("/dependencies/analyze")
    async def api_analyze(request: Request, settings: EngineSettings = Depends(_get_settings)) -> JSONResponse:
        """Full health report for one workspace snapshot."""
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        nodes = _require_list(body, "nodes", "nodes")
        if isinstance(nodes, JSONResponse):
            return nodes
        edges = _require_list(body, "edges", "edges")
        if isinstance(edges, JSONResponse):
            return edges
        report = analyze_graph(nodes, edges, settings=settings.analysis)
        return JSONResponse(report.to_dict())

    @router.post("/dependencies/check-cycle")
    async def api_check_cycle(request: Request) -> JSONResponse:
        """Would adding ``before -> after`` close an ordering cycle?"""
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        nodes = _require_list(body, "nodes", "nodes")
        if isinstance(nodes, JSONResponse):
            return nodes
        edges = _require_list(body, "edges", "edges")
        if isinstance(edges, JSONResponse):
            return edges
        before, err = sanitize_identifier(body.get("before"), "before")
        if err:
            return _error_response(err, "VALIDATION_ERROR", 400, {"param": "before"})
        after, err = sanitize_identifier(body.get("after"), "after")
        if err:
            return _error_response(err, "VALIDATION_ERROR", 400, {"param": "after"})

        built = DependencyGraph.from_snapshot(nodes, edges)
        missing = [nid for nid in (before, after) if nid not in built.graph.nodes]
        if missing:
            return _error_response(
                f"Unknown work item(s): {', '.join(missing)}", "NOT_FOUND", 404, {"ids": missing}
            )
        return JSONResponse(
            {
                "before": before,
                "after": after,
                "wouldCreateCycle": built.graph.would_create_cycle(before, after),
                "inputIssues": [i.to_dict() for i in built.issues],
            }
        )

    return router
