"""Pytest fixtures: SQLite mirror per test and a fake external memory service."""

import asyncio
import itertools
import json
from collections import Counter
from datetime import datetime
from pathlib import Path

import httpx
import pytest
from dotenv import load_dotenv

from chatmem.core.config import DatabaseSettings, MemoryServiceSettings, Settings, get_settings

# Load repo .env if present; tests set everything they rely on explicitly.
load_dotenv(Path(__file__).resolve().parent.parent / ".env")


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    """Auto-clear the settings and API-key caches after each test to prevent pollution."""
    yield
    from chatmem.api.auth import _build_api_keys

    get_settings.cache_clear()
    _build_api_keys.cache_clear()


class FakeMemoryService:
    """In-memory stand-in for the external memory service, served through httpx.MockTransport."""

    def __init__(self) -> None:
        self.users: dict[str, str] = {}  # external_id -> user_id
        self.memories: dict[str, dict] = {}
        self.calls: Counter = Counter()
        self.requests: list[httpx.Request] = []
        self.provision_delay = 0.0
        self.fail_provision_status: int | None = None
        self.fail_create_status: int | None = None
        self.fail_delete: tuple[int, str] | None = None  # (status, detail)
        self.transport_failures: dict[str, int] = {}  # operation -> failures left
        self._ids = itertools.count(1)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def _maybe_drop(self, operation: str) -> None:
        left = self.transport_failures.get(operation, 0)
        if left:
            self.transport_failures[operation] = left - 1
            raise httpx.ConnectError("connection refused")

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        method = request.method
        body = json.loads(request.content) if request.content else {}

        if method == "POST" and path == "/v1/user":
            self.calls["provision"] += 1
            self._maybe_drop("provision")
            if self.provision_delay:
                await asyncio.sleep(self.provision_delay)
            if self.fail_provision_status:
                return httpx.Response(self.fail_provision_status, json={"detail": "provision failed"})
            external_id = body["external_id"]
            user_id = self.users.setdefault(external_id, f"ext-{next(self._ids)}")
            return httpx.Response(200, json={"user_id": user_id, "external_id": external_id})

        if method == "POST" and path == "/v1/memory":
            self.calls["create"] += 1
            self._maybe_drop("create")
            if self.fail_create_status:
                return httpx.Response(self.fail_create_status, json={"detail": "create failed"})
            memory_id = f"mem-{next(self._ids)}"
            self.memories[memory_id] = {
                "memoryId": memory_id,
                "content": body["content"],
                "type": body.get("type"),
                "metadata": body.get("metadata") or {},
            }
            return httpx.Response(
                200, json={"code": 200, "status": "success", "data": [{"memoryId": memory_id}]}
            )

        if method == "POST" and path == "/v1/memory/search":
            self.calls["search"] += 1
            self._maybe_drop("search")
            user_id = body.get("user_id")
            query = (body.get("query") or "").lower()
            found = [
                m
                for m in self.memories.values()
                if m["metadata"].get("user_id") == user_id and query in m["content"].lower()
            ]
            return httpx.Response(200, json={"data": {"memories": found}})

        if method == "GET" and path == "/v1/memory/count":
            self.calls["count"] += 1
            user_id = request.url.params.get("user_id")
            count = sum(1 for m in self.memories.values() if m["metadata"].get("user_id") == user_id)
            return httpx.Response(200, json={"count": count})

        if path.startswith("/v1/memory/"):
            memory_id = path.rsplit("/", 1)[-1]
            if method == "GET":
                self.calls["fetch"] += 1
                self._maybe_drop("fetch")
                if memory_id not in self.memories:
                    return httpx.Response(404, json={"detail": "not found"})
                return httpx.Response(200, json={"data": [self.memories[memory_id]]})
            if method == "PUT":
                self.calls["update"] += 1
                if memory_id not in self.memories:
                    return httpx.Response(404, json={"detail": "not found"})
                self.memories[memory_id].update(
                    {k: v for k, v in body.items() if k in ("content", "type", "metadata")}
                )
                return httpx.Response(
                    200, json={"status": "success", "memory_items": [{"memoryId": memory_id}]}
                )
            if method == "DELETE":
                self.calls["delete"] += 1
                if self.fail_delete:
                    status, detail = self.fail_delete
                    return httpx.Response(status, json={"detail": detail})
                if self.memories.pop(memory_id, None) is None:
                    return httpx.Response(404, json={"detail": "not found"})
                return httpx.Response(200, json={"status": "success"})

        return httpx.Response(404, json={"detail": f"no route {method} {path}"})


@pytest.fixture
def fake_service() -> FakeMemoryService:
    return FakeMemoryService()


@pytest.fixture
def memory_settings() -> MemoryServiceSettings:
    return MemoryServiceSettings(api_key="test-memory-key", base_url="http://memory.test")


@pytest.fixture
def app_settings(tmp_path, memory_settings) -> Settings:
    return Settings(
        database=DatabaseSettings(url=f"sqlite+aiosqlite:///{tmp_path / 'chatmem.db'}"),
        memory_service=memory_settings,
    )


@pytest.fixture
async def db(app_settings):
    """DatabaseManager over a fresh SQLite file with all tables created."""
    from chatmem.storage.connection import DatabaseManager

    manager = await DatabaseManager.create(app_settings)
    await manager.create_all()
    yield manager
    await manager.close()


@pytest.fixture
async def memory_client(memory_settings, fake_service):
    from chatmem.memory.client import MemoryServiceClient

    client = MemoryServiceClient(memory_settings, transport=fake_service.transport)
    yield client
    await client.close()


@pytest.fixture
async def orchestrator(db, memory_client, app_settings):
    from chatmem.memory.orchestrator import MemoryOrchestrator

    return await MemoryOrchestrator.create(db, memory_client, app_settings)


@pytest.fixture
def add_subscription(db):
    """Insert a subscription row the way the billing collaborator would."""
    from chatmem.storage.models import SubscriptionModel

    async def _add(
        user_id: str,
        plan: str = "basic",
        status: str = "active",
        period_start: datetime | None = None,
        period_end: datetime | None = None,
    ) -> None:
        async with db.session() as session:
            session.add(
                SubscriptionModel(
                    user_id=user_id,
                    plan=plan,
                    status=status,
                    current_period_start=period_start,
                    current_period_end=period_end,
                )
            )

    return _add
