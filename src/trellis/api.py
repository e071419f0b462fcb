"""HTTP API for the trellis engine.

A stateless JSON API over the readiness, transition, review and dependency
analysis operations. Engine settings are resolved once at startup (from the
nearest ``.trellis/config.json`` plus environment overrides) and injected
via ``Depends(_get_settings)``.

Usage:
    trellis serve                 # localhost:8378
    trellis serve --port 9000     # Custom port
"""

from __future__ import annotations

import logging
from time import perf_counter
from typing import Any

from trellis.config import DEFAULT_SETTINGS, EngineSettings, discover_settings
from trellis.logging import elapsed_ms

DEFAULT_PORT = 8378

logger = logging.getLogger(__name__)

_settings: EngineSettings | None = None


def _get_settings() -> EngineSettings:
    """Return the active engine settings (defaults until configured)."""
    return _settings if _settings is not None else DEFAULT_SETTINGS


def create_app(*, settings: EngineSettings | None = None) -> Any:
    """Create the FastAPI application with all engine endpoints.

    When *settings* is given it replaces the active settings for every
    request served by this process.
    """
    from fastapi import FastAPI, Request
    from fastapi.responses import JSONResponse

    from trellis import __version__
    from trellis.api_routes.dependencies import create_router as create_dependencies_router
    from trellis.api_routes.phase import create_router as create_phase_router
    from trellis.api_routes.review import create_router as create_review_router

    # Expose Request in module globals so PEP 563 deferred annotations resolve
    globals()["Request"] = Request

    global _settings
    if settings is not None:
        _settings = settings

    app = FastAPI(title="Trellis", docs_url=None, redoc_url=None)

    app.include_router(create_phase_router(), prefix="/api")
    app.include_router(create_dependencies_router(), prefix="/api")
    app.include_router(create_review_router(), prefix="/api")

    @app.middleware("http")
    async def _log_requests(request: Request, call_next: Any) -> Any:
        t0 = perf_counter()
        response = await call_next(request)
        logger.info(
            "%s %s -> %d",
            request.method,
            request.url.path,
            response.status_code,
            extra={
                "operation": "http_request",
                "http": {"method": request.method, "path": request.url.path, "status": response.status_code},
                "duration_ms": elapsed_ms(t0),
            },
        )
        return response

    @app.get("/api/health")
    async def api_health() -> JSONResponse:
        return JSONResponse({"status": "ok", "version": __version__})

    return app


def main(port: int = DEFAULT_PORT) -> None:
    """Start the API server on localhost."""
    import uvicorn

    global _settings
    _settings = discover_settings()
    app = create_app()

    print(f"Trellis API: http://localhost:{port}")
    uvicorn.run(app, host="127.0.0.1", port=port, log_level="warning")
