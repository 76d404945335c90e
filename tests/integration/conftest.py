"""Integration fixtures: the full FastAPI app over the SQLite test database and fake memory service."""

from contextlib import asynccontextmanager

import httpx
import pytest

from chatmem.api.app import create_app
from chatmem.api.auth import _build_api_keys
from chatmem.core.config import get_settings

API_KEY = "test-api-key"
ADMIN_KEY = "test-admin-key"


@pytest.fixture
def api_env(monkeypatch):
    monkeypatch.setenv("AUTH__API_KEY", API_KEY)
    monkeypatch.setenv("AUTH__ADMIN_API_KEY", ADMIN_KEY)
    monkeypatch.setenv("AUTH__RATE_LIMIT_REQUESTS_PER_MINUTE", "0")
    monkeypatch.setenv("DEBUG", "false")
    get_settings.cache_clear()
    _build_api_keys.cache_clear()


@pytest.fixture
def admin_key() -> str:
    return ADMIN_KEY


@pytest.fixture
def api_client(api_env):
    """Factory: AsyncClient for an app wired to ``orchestrator``.

    ASGITransport does not run the lifespan, so the orchestrator is set on
    ``app.state`` directly.
    """

    @asynccontextmanager
    async def _client(orchestrator, user_id: str = "u-1"):
        app = create_app()
        app.state.orchestrator = orchestrator
        async with httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app),
            base_url="http://test/api/v1",
            headers={"X-API-Key": API_KEY, "X-User-Id": user_id},
        ) as client:
            yield client

    return _client


@pytest.fixture
async def api(api_client, orchestrator):
    """AsyncClient authenticated as end user ``u-1``."""
    async with api_client(orchestrator) as client:
        yield client
