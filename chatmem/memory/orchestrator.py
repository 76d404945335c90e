"""Memory orchestrator: coordinates save/update/delete/search and usage sync."""

import asyncio
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from ..core.config import Settings, get_settings
from ..core.enums import MemoryContentType, UsageMetric
from ..core.exceptions import MemoryNotFoundError, ValidationError
from ..core.schemas import (
    IncrementResult,
    MemoryMetadata,
    MemoryRecord,
    MemorySummary,
    MessageMemoryLink,
    UsageSummary,
    UsageWarning,
)
from ..storage.connection import DatabaseManager
from ..storage.identities import IdentityRepository
from ..storage.message_links import MessageLinkRepository
from ..storage.usage import UsageRepository
from ..usage.accountant import UsageAccountant
from ..usage.plans import PlanCatalog
from ..utils.logging_config import get_logger
from ..utils.metrics import MEMORY_DELETES, MEMORY_WRITES, SECONDARY_WRITE_FAILURES
from .client import DeleteResult, MemoryServiceClient
from .identity import IdentityResolver
from .linker import MessageMemoryLinker
from .results import FullySucceeded, PartiallySucceeded, SaveResult, SyncReport, UpdateResult

logger = get_logger(__name__)


def _parse_metadata(metadata: MemoryMetadata | dict[str, Any] | None) -> MemoryMetadata:
    if metadata is None:
        return MemoryMetadata()
    if isinstance(metadata, MemoryMetadata):
        return metadata
    try:
        return MemoryMetadata.model_validate(metadata)
    except PydanticValidationError as e:
        err = e.errors()[0]
        field = ".".join(str(p) for p in err.get("loc", ()))
        raise ValidationError(f"Invalid metadata field '{field}': {err['msg']}") from e


def _parse_type(memory_type: MemoryContentType | str | None) -> MemoryContentType:
    if memory_type is None:
        return MemoryContentType.TEXT
    try:
        return MemoryContentType(memory_type)
    except ValueError as e:
        raise ValidationError(f"Unsupported memory type: {memory_type}") from e


class MemoryOrchestrator:
    """Entry point for memory operations.

    Save runs ``validate -> check quota -> resolve identity -> store
    externally -> {link locally, increment usage}``. Anything failing before
    the external write aborts with no side effects; once the memory service
    has accepted the write, bookkeeping failures are logged and reported as
    a partial success instead of an error.
    """

    def __init__(
        self,
        client: MemoryServiceClient,
        identity: IdentityResolver,
        linker: MessageMemoryLinker,
        accountant: UsageAccountant,
        identities: IdentityRepository | None = None,
        settings: Settings | None = None,
    ):
        self.client = client
        self.identity = identity
        self.linker = linker
        self.accountant = accountant
        self.identities = identities or identity.repository
        self.settings = settings or get_settings()

    @classmethod
    async def create(
        cls,
        db_manager: DatabaseManager,
        client: MemoryServiceClient | None = None,
        settings: Settings | None = None,
        catalog: PlanCatalog | None = None,
    ) -> "MemoryOrchestrator":
        """Factory method wiring repositories, client and accountant."""
        settings = settings or get_settings()
        client = client or MemoryServiceClient(settings.memory_service)

        identities = IdentityRepository(db_manager.session)
        identity = IdentityResolver(
            identities,
            client,
            cache_size=settings.usage.identity_cache_size,
        )
        linker = MessageMemoryLinker(MessageLinkRepository(db_manager.session))

        async def count_external_memories(user_id: str) -> int:
            external_user_id = await identity.lookup(user_id)
            if external_user_id is None:
                return 0
            return await client.count_memories(external_user_id)

        accountant = UsageAccountant(
            UsageRepository(db_manager.session),
            catalog=catalog,
            memory_counter=count_external_memories,
            atomic=settings.usage.atomic_increments,
            warning_threshold=settings.usage.warning_threshold,
        )
        return cls(
            client=client,
            identity=identity,
            linker=linker,
            accountant=accountant,
            identities=identities,
            settings=settings,
        )

    # ---- save ----

    async def save_memory(
        self,
        user_id: str,
        content: str,
        metadata: MemoryMetadata | dict[str, Any] | None = None,
        memory_type: MemoryContentType | str | None = None,
        message_id: str | None = None,
        chat_id: str | None = None,
    ) -> SaveResult:
        """Store a memory for ``user_id`` and, when given, link it to a message.

        The work runs shielded: a caller that goes away mid-request does not
        cancel an external write that may already have been accepted.
        """
        if not content or not content.strip():
            raise ValidationError("content is required")
        if bool(message_id) != bool(chat_id):
            raise ValidationError("messageId and chatId must be provided together")
        meta = _parse_metadata(metadata)
        content_type = _parse_type(memory_type)
        self.client.ensure_configured()

        return await asyncio.shield(
            self._save(user_id, content, meta, content_type, message_id, chat_id)
        )

    async def _save(
        self,
        user_id: str,
        content: str,
        metadata: MemoryMetadata,
        memory_type: MemoryContentType,
        message_id: str | None,
        chat_id: str | None,
    ) -> SaveResult:
        await self.accountant.ensure_allowed(user_id, UsageMetric.MEMORIES_ADDED)
        external_user_id = await self.identity.resolve(user_id)

        wire = metadata.to_wire(
            external_user_id=external_user_id,
            app_user_id=user_id,
            default_source_type=self.settings.memory_service.source_type,
        )
        try:
            memory_id = await self.client.create(external_user_id, content, wire, memory_type)
        except Exception:
            MEMORY_WRITES.labels(status="error").inc()
            raise

        errors: list[str] = []
        if message_id and chat_id:
            summary = MemorySummary(
                memory_id=memory_id,
                content=content,
                category=metadata.category.value if metadata.category else None,
                created_at=metadata.created_at or datetime.now(UTC),
            )
            try:
                await self._append_to_message(user_id, message_id, chat_id, summary)
            except Exception as e:
                errors.append(f"link: {e}")
                SECONDARY_WRITE_FAILURES.labels(step="link").inc()
                logger.error(
                    "secondary_write_failed",
                    step="link",
                    user_id=user_id,
                    memory_id=memory_id,
                    message_id=message_id,
                    error=str(e),
                )
        try:
            await self.accountant.increment(user_id, UsageMetric.MEMORIES_ADDED, reference=memory_id)
        except Exception as e:
            errors.append(f"usage: {e}")
            SECONDARY_WRITE_FAILURES.labels(step="usage").inc()
            logger.error(
                "secondary_write_failed",
                step="usage",
                user_id=user_id,
                memory_id=memory_id,
                error=str(e),
            )

        if errors:
            MEMORY_WRITES.labels(status="partial").inc()
            logger.warning("memory_saved_partially", user_id=user_id, memory_id=memory_id)
            return PartiallySucceeded(memory_id=memory_id, secondary_errors=tuple(errors))
        MEMORY_WRITES.labels(status="full").inc()
        logger.info("memory_created", user_id=user_id, memory_id=memory_id)
        return FullySucceeded(memory_id=memory_id)

    async def _append_to_message(
        self, user_id: str, message_id: str, chat_id: str, summary: MemorySummary
    ) -> MessageMemoryLink:
        # Read-modify-write of the whole snapshot; concurrent appends are last-writer-wins.
        existing = await self.linker.get(message_id)
        memories = list(existing.memories) if existing else []
        memories.append(summary)
        return await self.linker.attach(message_id, chat_id, memories, user_id=user_id)

    # ---- update / delete ----

    async def update_memory(
        self,
        user_id: str,
        memory_id: str,
        content: str | None = None,
        metadata: MemoryMetadata | dict[str, Any] | None = None,
        memory_type: MemoryContentType | str | None = None,
    ) -> UpdateResult:
        if not memory_id:
            raise ValidationError("memoryId is required")
        updated: list[str] = []
        wire: dict[str, Any] | None = None
        if content is not None:
            if not content.strip():
                raise ValidationError("content must not be empty")
            updated.append("content")
        content_type = None
        if memory_type is not None:
            content_type = _parse_type(memory_type)
            updated.append("type")
        if metadata is not None:
            meta = _parse_metadata(metadata)
            patch = meta.to_wire_patch()
            if patch:
                wire = patch
                updated.extend(meta.set_fields())
        if not updated:
            raise ValidationError("No fields provided for update")

        success = await self.client.update(
            memory_id, content=content, metadata=wire, memory_type=content_type
        )
        logger.info(
            "memory_updated" if success else "memory_update_rejected",
            user_id=user_id,
            memory_id=memory_id,
            fields=updated,
        )
        return UpdateResult(memory_id=memory_id, success=success, updated_fields=tuple(updated))

    async def delete_memory(
        self, user_id: str, memory_id: str, reason: str | None = None
    ) -> DeleteResult:
        """Delete in the memory service only; links and counters are left as they are."""
        if not memory_id:
            raise ValidationError("memoryId is required")
        result = await self.client.delete(memory_id)
        MEMORY_DELETES.labels(outcome="deleted" if result.success else "rejected").inc()
        logger.info(
            "memory_deleted" if result.success else "memory_delete_failed",
            user_id=user_id,
            memory_id=memory_id,
            reason=reason,
            error=result.error,
        )
        return result

    # ---- reads ----

    async def fetch_memory(self, user_id: str, memory_id: str) -> MemoryRecord:
        if not memory_id:
            raise ValidationError("memoryId is required")
        record = await self.client.fetch(memory_id)
        if record is None:
            raise MemoryNotFoundError(memory_id)
        return record

    async def search_memories(
        self, user_id: str, query: str, max_memories: int | None = None
    ) -> list[MemoryRecord]:
        """Search the user's memories; each search performed counts as one ``memories_searched``."""
        if not query or not query.strip():
            raise ValidationError("query is required")
        self.client.ensure_configured()
        await self.accountant.ensure_allowed(user_id, UsageMetric.MEMORIES_SEARCHED)
        external_user_id = await self.identity.lookup(user_id)
        if external_user_id is None:
            return []
        records = await self.client.search(external_user_id, query, max_memories)
        try:
            await self.accountant.increment(user_id, UsageMetric.MEMORIES_SEARCHED)
        except Exception as e:
            SECONDARY_WRITE_FAILURES.labels(step="usage").inc()
            logger.error(
                "secondary_write_failed", step="usage", user_id=user_id, error=str(e)
            )
        return records

    async def resolve_identity(self, user_id: str) -> str:
        return await self.identity.resolve(user_id)

    # ---- message links ----

    async def attach_message_memories(
        self,
        user_id: str,
        message_id: str | None,
        chat_id: str | None,
        memories: Sequence[MemorySummary | dict[str, Any]] | None,
    ) -> MessageMemoryLink:
        return await self.linker.attach(message_id, chat_id, memories, user_id=user_id)

    async def get_message_memories(self, message_id: str) -> MessageMemoryLink | None:
        return await self.linker.get(message_id)

    # ---- usage ----

    async def consume_usage(self, user_id: str, metric: UsageMetric) -> IncrementResult:
        return await self.accountant.check_and_increment(user_id, metric)

    async def usage_summary(self, user_id: str) -> UsageSummary:
        return await self.accountant.summary(user_id)

    async def usage_warnings(self, user_id: str) -> tuple[list[UsageWarning], bool]:
        return await self.accountant.warnings(user_id)

    async def sync_usage(self, user_id: str) -> dict[UsageMetric, int]:
        return await self.accountant.reconcile(user_id)

    async def sync_all_usage(self) -> SyncReport:
        """Reconcile every known user; one user's failure does not stop the rest."""
        user_ids = set(await self.accountant.repository.list_user_ids())
        user_ids.update(await self.identities.list_internal_user_ids())
        report = SyncReport()
        for user_id in sorted(user_ids):
            try:
                await self.accountant.reconcile(user_id)
                report.users_synced += 1
            except Exception as e:
                report.failures[user_id] = str(e)
                logger.error("usage_sync_failed", user_id=user_id, error=str(e))
        logger.info(
            "usage_sync_all_completed",
            users_synced=report.users_synced,
            failures=len(report.failures),
        )
        return report

    async def close(self) -> None:
        await self.client.close()
