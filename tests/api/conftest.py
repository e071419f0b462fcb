"""Fixtures for HTTP API tests (FastAPI)."""

from __future__ import annotations

from collections.abc import AsyncIterator

import pytest
from httpx import ASGITransport, AsyncClient

import trellis.api as api_module
from trellis.api import create_app
from trellis.config import DEFAULT_SETTINGS, EngineSettings, ReadinessSettings


@pytest.fixture
async def client() -> AsyncIterator[AsyncClient]:
    """Test client running with default engine settings."""
    app = create_app(settings=DEFAULT_SETTINGS)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    api_module._settings = None


@pytest.fixture
async def lenient_client() -> AsyncIterator[AsyncClient]:
    """Test client whose upgrade threshold is lowered to 70%."""
    settings = EngineSettings(readiness=ReadinessSettings(upgrade_threshold=70))
    app = create_app(settings=settings)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    api_module._settings = None
