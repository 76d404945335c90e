"""Local snapshots of which memories a chat message produced."""

from collections.abc import Sequence
from typing import Any

import structlog
from pydantic import ValidationError as PydanticValidationError

from ..core.exceptions import ValidationError
from ..core.schemas import MemorySummary, MessageMemoryLink
from ..storage.message_links import MessageLinkRepository

logger = structlog.get_logger(__name__)


class MessageMemoryLinker:
    """Attach memory summaries to a message; one snapshot per message, overwritten on attach."""

    def __init__(self, repository: MessageLinkRepository) -> None:
        self.repository = repository

    async def attach(
        self,
        message_id: str | None,
        chat_id: str | None,
        memories: Sequence[MemorySummary | dict[str, Any]] | None,
        user_id: str | None = None,
    ) -> MessageMemoryLink:
        if not message_id or not chat_id or memories is None:
            raise ValidationError("Missing required fields")
        try:
            summaries = [
                m if isinstance(m, MemorySummary) else MemorySummary.model_validate(m)
                for m in memories
            ]
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid memory summary: {e.errors()[0]['msg']}") from e
        link = await self.repository.upsert(message_id, chat_id, summaries, user_id=user_id)
        logger.debug(
            "message_memories_attached",
            message_id=message_id,
            chat_id=chat_id,
            memory_count=len(summaries),
        )
        return link

    async def get(self, message_id: str) -> MessageMemoryLink | None:
        if not message_id:
            raise ValidationError("messageId is required")
        return await self.repository.get(message_id)
