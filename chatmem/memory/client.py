"""HTTP client for the external long-term memory service (httpx)."""

import contextlib
from dataclasses import dataclass
from typing import Any

import httpx
import structlog
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .. import __version__
from ..core.config import MemoryServiceSettings, get_settings
from ..core.enums import MemoryContentType
from ..core.exceptions import ConfigurationError, ExternalServiceError
from ..core.schemas import MemoryMetadata, MemoryRecord
from ..utils.metrics import EXTERNAL_LATENCY

logger = structlog.get_logger(__name__)

NOT_CONFIGURED = "Memory service not configured"

# Transient failures worth another attempt on idempotent reads.
_RETRY_EXCEPTIONS = (httpx.TransportError,)


@dataclass
class DeleteResult:
    """Outcome of a delete; a missing memory is a failure, not an exception."""

    memory_id: str
    success: bool
    message: str | None = None
    error: str | None = None

    def to_api(self) -> dict[str, Any]:
        data: dict[str, Any] = {"success": self.success, "memoryId": self.memory_id}
        if self.message:
            data["message"] = self.message
        if self.error:
            data["error"] = self.error
        return data


def _error_detail(response: httpx.Response) -> str:
    body: Any = None
    with contextlib.suppress(ValueError):
        body = response.json()
    msg = f"HTTP {response.status_code}"
    if isinstance(body, dict):
        msg = str(body.get("detail") or body.get("error") or body.get("message") or msg)
    return msg


def _raise_for_status(response: httpx.Response, operation: str) -> None:
    """Map a non-2xx response to ExternalServiceError carrying the status code."""
    if response.is_success:
        return
    raise ExternalServiceError(
        f"Memory service {operation} failed: {_error_detail(response)}",
        status_code=response.status_code,
    )


def _parse_record(item: dict[str, Any]) -> MemoryRecord:
    memory_id = item.get("memoryId") or item.get("memory_id") or item.get("id")
    metadata = MemoryMetadata.from_wire(item.get("metadata"))
    custom = item.get("customMetadata")
    if custom:
        extra = MemoryMetadata.from_wire({"customMetadata": custom})
        metadata.custom_fields.update(extra.custom_fields)
        if metadata.category is None:
            metadata.category = extra.category
    return MemoryRecord(
        memory_id=str(memory_id),
        content=item.get("content") or "",
        memory_type=item.get("type"),
        metadata=metadata,
        created_at=item.get("createdAt") or item.get("created_at"),
        score=item.get("score") or item.get("relevance_score"),
    )


class MemoryServiceClient:
    """Async client for create/update/delete/fetch/search against the memory service.

    Touches no local tables. Writes are attempted exactly once; reads retry
    transport failures with exponential backoff.
    """

    def __init__(
        self,
        settings: MemoryServiceSettings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings or get_settings().memory_service
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def configured(self) -> bool:
        return self.settings.configured

    def ensure_configured(self) -> None:
        if not self.configured:
            raise ConfigurationError(NOT_CONFIGURED)

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self.ensure_configured()
            self._client = httpx.AsyncClient(
                base_url=self.settings.base_url,
                timeout=self.settings.timeout,
                transport=self._transport,
                headers={
                    "X-API-Key": self.settings.api_key or "",
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                    "User-Agent": f"chatmem/{__version__}",
                },
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # ---- transport ----

    async def _request_with_retry(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(max(1, self.settings.read_retries)),
            wait=wait_exponential(multiplier=0.2, max=2),
            retry=retry_if_exception_type(_RETRY_EXCEPTIONS),
            reraise=True,
        ):
            with attempt:
                return await self.client.request(method, path, **kwargs)
        raise AssertionError("unreachable")

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        *,
        retry_reads: bool = False,
        **kwargs: Any,
    ) -> httpx.Response:
        self.ensure_configured()
        send = self._request_with_retry if retry_reads else self.client.request
        with EXTERNAL_LATENCY.labels(operation=operation).time():
            try:
                return await send(method, path, **kwargs)
            except httpx.HTTPError as e:
                logger.warning(
                    "memory_service_unreachable",
                    operation=operation,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise ExternalServiceError(
                    f"Memory service {operation} failed: {e}", cause=e
                ) from e

    # ---- identity ----

    async def provision_user(
        self,
        external_id: str,
        email: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Create a user in the memory service and return its user id."""
        payload: dict[str, Any] = {"external_id": external_id, "metadata": metadata or {}}
        if email:
            payload["email"] = email
        response = await self._request("provision_user", "POST", "/v1/user", json=payload)
        _raise_for_status(response, "provision_user")
        body = response.json()
        user_id = body.get("user_id") or body.get("id") or (body.get("data") or {}).get("user_id")
        if not user_id:
            raise ExternalServiceError(
                "Memory service provision_user failed: response has no user id",
                status_code=response.status_code,
            )
        return str(user_id)

    # ---- memories ----

    async def create(
        self,
        external_user_id: str,
        content: str,
        metadata: dict[str, Any],
        memory_type: MemoryContentType = MemoryContentType.TEXT,
    ) -> str:
        """Store a memory; returns the service-assigned memory id."""
        payload = {
            "content": content,
            "type": MemoryContentType(memory_type).value,
            "metadata": {**metadata, "user_id": external_user_id},
        }
        response = await self._request("create", "POST", "/v1/memory", json=payload)
        _raise_for_status(response, "create")
        data = response.json().get("data") or []
        memory_id = data[0].get("memoryId") if data and isinstance(data[0], dict) else None
        if not memory_id:
            raise ExternalServiceError(
                "Memory service create failed: response has no memory id",
                status_code=response.status_code,
            )
        return str(memory_id)

    async def update(
        self,
        memory_id: str,
        content: str | None = None,
        metadata: dict[str, Any] | None = None,
        memory_type: MemoryContentType | None = None,
    ) -> bool:
        """Patch a memory. Only the fields given are sent."""
        payload: dict[str, Any] = {}
        if content is not None:
            payload["content"] = content
        if metadata is not None:
            payload["metadata"] = metadata
        if memory_type is not None:
            payload["type"] = MemoryContentType(memory_type).value
        response = await self._request("update", "PUT", f"/v1/memory/{memory_id}", json=payload)
        _raise_for_status(response, "update")
        body = response.json()
        return body.get("status") == "success" and bool(body.get("memory_items", True))

    async def delete(self, memory_id: str) -> DeleteResult:
        """Delete a memory.

        Any rejection by the service (missing, already deleted, refused) is a
        failed result. Only an unreachable service raises.
        """
        response = await self._request("delete", "DELETE", f"/v1/memory/{memory_id}")
        if response.is_success:
            return DeleteResult(
                memory_id=memory_id, success=True, message="Deleted memory successfully"
            )
        if response.status_code == 404:
            error = f"Memory {memory_id} not found"
        else:
            error = _error_detail(response)
        logger.warning(
            "memory_delete_rejected",
            memory_id=memory_id,
            status_code=response.status_code,
            error=error,
        )
        return DeleteResult(
            memory_id=memory_id,
            success=False,
            message="Failed to delete memory",
            error=error,
        )

    async def fetch(self, memory_id: str) -> MemoryRecord | None:
        response = await self._request(
            "fetch", "GET", f"/v1/memory/{memory_id}", retry_reads=True
        )
        if response.status_code == 404:
            return None
        _raise_for_status(response, "fetch")
        body = response.json()
        data = body.get("data", body)
        if isinstance(data, list):
            if not data:
                return None
            data = data[0]
        return _parse_record(data)

    async def search(
        self,
        external_user_id: str,
        query: str,
        max_memories: int | None = None,
    ) -> list[MemoryRecord]:
        limit = max_memories or self.settings.max_search_results
        response = await self._request(
            "search",
            "POST",
            "/v1/memory/search",
            json={"query": query, "user_id": external_user_id},
            params={"max_memories": limit},
            retry_reads=True,
        )
        if response.status_code == 404:
            return []
        _raise_for_status(response, "search")
        data = response.json().get("data") or {}
        items = (data.get("memories") or []) if isinstance(data, dict) else data
        return [_parse_record(item) for item in items][:limit]

    async def count_memories(self, external_user_id: str) -> int:
        """Total memories stored for a user (authoritative for reconciliation)."""
        response = await self._request(
            "count",
            "GET",
            "/v1/memory/count",
            params={"user_id": external_user_id},
            retry_reads=True,
        )
        if response.status_code == 404:
            return 0
        _raise_for_status(response, "count")
        return int(response.json().get("count", 0))
