"""Persistence for message -> memories snapshots."""

import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select

from ..core.schemas import MemorySummary, MessageMemoryLink
from .models import MessageMemoryModel
from .utils import dialect_insert, naive_utc


class MessageLinkRepository:
    """One row per message; writes overwrite the whole snapshot."""

    def __init__(self, session_factory: Any) -> None:
        self.session_factory = session_factory

    async def upsert(
        self,
        message_id: str,
        chat_id: str,
        memories: list[MemorySummary],
        user_id: str | None = None,
    ) -> MessageMemoryLink:
        now = naive_utc(datetime.now(UTC))
        payload = [m.model_dump(mode="json", exclude_none=True) for m in memories]
        async with self.session_factory() as session:
            stmt = dialect_insert(session, MessageMemoryModel.__table__).values(
                id=uuid.uuid4(),
                message_id=message_id,
                chat_id=chat_id,
                user_id=user_id,
                memories=payload,
                created_at=now,
                updated_at=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["message_id"],
                set_={
                    "chat_id": stmt.excluded.chat_id,
                    "user_id": stmt.excluded.user_id,
                    "memories": stmt.excluded.memories,
                    "updated_at": stmt.excluded.updated_at,
                },
            )
            await session.execute(stmt)
            r = await session.execute(
                select(MessageMemoryModel).where(MessageMemoryModel.message_id == message_id)
            )
            return self._to_schema(r.scalar_one())

    async def get(self, message_id: str) -> MessageMemoryLink | None:
        async with self.session_factory() as session:
            r = await session.execute(
                select(MessageMemoryModel).where(MessageMemoryModel.message_id == message_id)
            )
            model = r.scalar_one_or_none()
            return self._to_schema(model) if model else None

    @staticmethod
    def _to_schema(model: MessageMemoryModel) -> MessageMemoryLink:
        return MessageMemoryLink(
            message_id=model.message_id,
            chat_id=model.chat_id,
            user_id=model.user_id,
            memories=[MemorySummary.model_validate(m) for m in (model.memories or [])],
            created_at=model.created_at,
            updated_at=model.updated_at,
        )
