"""API routes for memory operations."""

from datetime import UTC, datetime

import structlog
from fastapi import APIRouter, Depends, Query, Request

from ..memory.orchestrator import MemoryOrchestrator
from .dependencies import AuthContext, get_orchestrator, parse_body, require_user
from .schemas import (
    AttachMessageMemoriesRequest,
    DeleteMemoryRequest,
    SaveMemoryRequest,
    UpdateMemoryRequest,
)

logger = structlog.get_logger()
router = APIRouter(tags=["memory"])


# ---- Message links ----


@router.post("/memory/message")
async def attach_message_memories(
    request: Request,
    auth: AuthContext = Depends(require_user),
    orchestrator: MemoryOrchestrator = Depends(get_orchestrator),
):
    """Store the snapshot of memories a chat message produced (overwrites any previous one)."""
    body = await parse_body(request, AttachMessageMemoriesRequest)
    link = await orchestrator.attach_message_memories(
        user_id=auth.user_id,
        message_id=body.message_id,
        chat_id=body.chat_id,
        memories=body.memories,
    )
    return {"success": True, "memoryCount": len(link.memories)}


@router.get("/memory/message")
async def get_message_memories(
    message_id: str = Query(..., alias="messageId", min_length=1),
    auth: AuthContext = Depends(require_user),
    orchestrator: MemoryOrchestrator = Depends(get_orchestrator),
):
    link = await orchestrator.get_message_memories(message_id)
    if link is None or not link.memories:
        return {"memories": [], "message": "No memories found"}
    return {
        "memories": [m.to_api() for m in link.memories],
        "count": len(link.memories),
        "chatId": link.chat_id,
    }


# ---- Memories ----


@router.post("/memory/save")
async def save_memory(
    request: Request,
    auth: AuthContext = Depends(require_user),
    orchestrator: MemoryOrchestrator = Depends(get_orchestrator),
):
    """Store a memory externally, link it to the message (if given) and count it."""
    body = await parse_body(request, SaveMemoryRequest)
    result = await orchestrator.save_memory(
        user_id=auth.user_id,
        content=body.content,
        metadata=body.metadata,
        memory_type=body.type,
        message_id=body.message_id,
        chat_id=body.chat_id,
    )
    return result.to_api()


@router.post("/memory/update")
async def update_memory(
    request: Request,
    auth: AuthContext = Depends(require_user),
    orchestrator: MemoryOrchestrator = Depends(get_orchestrator),
):
    body = await parse_body(request, UpdateMemoryRequest)
    result = await orchestrator.update_memory(
        user_id=auth.user_id,
        memory_id=body.memory_id,
        content=body.content,
        metadata=body.metadata,
        memory_type=body.type,
    )
    return result.to_api()


@router.post("/memory/delete")
async def delete_memory(
    request: Request,
    auth: AuthContext = Depends(require_user),
    orchestrator: MemoryOrchestrator = Depends(get_orchestrator),
):
    """Delete a memory in the memory service. Not-found is reported, not raised."""
    body = await parse_body(request, DeleteMemoryRequest)
    result = await orchestrator.delete_memory(auth.user_id, body.memory_id, reason=body.reason)
    return result.to_api()


@router.get("/memory/item/{memory_id}")
async def get_memory(
    memory_id: str,
    auth: AuthContext = Depends(require_user),
    orchestrator: MemoryOrchestrator = Depends(get_orchestrator),
):
    record = await orchestrator.fetch_memory(auth.user_id, memory_id)
    return record.to_api()


@router.get("/memory/search")
async def search_memories(
    query: str = Query(..., min_length=1),
    max_memories: int | None = Query(None, alias="maxMemories", ge=1, le=100),
    auth: AuthContext = Depends(require_user),
    orchestrator: MemoryOrchestrator = Depends(get_orchestrator),
):
    records = await orchestrator.search_memories(auth.user_id, query, max_memories)
    return {"memories": [r.to_api() for r in records], "count": len(records)}


# ---- Identity ----


@router.get("/identity")
async def get_identity(
    auth: AuthContext = Depends(require_user),
    orchestrator: MemoryOrchestrator = Depends(get_orchestrator),
):
    """Return (provisioning on first use) the caller's memory-service identity."""
    external_user_id = await orchestrator.resolve_identity(auth.user_id)
    return {"userId": auth.user_id, "externalUserId": external_user_id}


# ---- Health ----


@router.get("/health")
async def health():
    return {"status": "healthy", "timestamp": datetime.now(UTC).isoformat()}
