"""Unit tests for the memory orchestrator save/update/delete/search flows."""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from chatmem.core.config import MemoryServiceSettings
from chatmem.core.enums import PlanId, UsageMetric
from chatmem.core.exceptions import (
    ConfigurationError,
    ExternalServiceError,
    MemoryNotFoundError,
    PersistenceError,
    QuotaExceededError,
    ValidationError,
)
from chatmem.memory.client import MemoryServiceClient
from chatmem.memory.orchestrator import MemoryOrchestrator
from chatmem.memory.results import FullySucceeded, PartiallySucceeded
from chatmem.storage.utils import LIFETIME_PERIOD
from chatmem.usage.plans import DEFAULT_PLAN_LIMITS, PlanCatalog


async def _memories_added(orchestrator, user_id):
    return await orchestrator.accountant.repository.get_count(
        user_id, "memories_added", LIFETIME_PERIOD
    )


class TestSaveMemory:
    async def test_full_save_links_and_counts(self, orchestrator, fake_service):
        result = await orchestrator.save_memory(
            "u-1",
            "Prefers green tea",
            metadata={"category": "preferences", "topics": ["drinks"]},
            message_id="msg-1",
            chat_id="chat-1",
        )
        assert isinstance(result, FullySucceeded)
        assert result.memory_id in fake_service.memories
        link = await orchestrator.get_message_memories("msg-1")
        assert [m.memory_id for m in link.memories] == [result.memory_id]
        assert link.memories[0].category == "preferences"
        assert await _memories_added(orchestrator, "u-1") == 1

    async def test_wire_metadata_carries_both_user_ids(self, orchestrator, fake_service):
        result = await orchestrator.save_memory("u-1", "x", metadata={"category": "goals"})
        stored = fake_service.memories[result.memory_id]["metadata"]
        assert stored["user_id"] == fake_service.users["chat-user-u-1"]
        assert stored["customMetadata"]["app_user_id"] == "u-1"
        assert stored["customMetadata"]["category"] == "goals"
        assert stored["sourceType"] == "chat"

    async def test_save_without_message_does_not_link(self, orchestrator):
        result = await orchestrator.save_memory("u-1", "standalone")
        assert isinstance(result, FullySucceeded)
        assert await orchestrator.get_message_memories("msg-1") is None
        assert await _memories_added(orchestrator, "u-1") == 1

    async def test_second_save_appends_to_message(self, orchestrator):
        first = await orchestrator.save_memory("u-1", "a", message_id="msg-1", chat_id="chat-1")
        second = await orchestrator.save_memory("u-1", "b", message_id="msg-1", chat_id="chat-1")
        link = await orchestrator.get_message_memories("msg-1")
        assert [m.memory_id for m in link.memories] == [first.memory_id, second.memory_id]

    async def test_identity_provisioned_once_across_saves(self, orchestrator, fake_service):
        await orchestrator.save_memory("u-1", "a")
        await orchestrator.save_memory("u-1", "b")
        assert fake_service.calls["provision"] == 1

    async def test_caller_cancellation_does_not_abort_external_write(
        self, orchestrator, fake_service
    ):
        fake_service.provision_delay = 0.05
        task = asyncio.create_task(orchestrator.save_memory("u-1", "keep me"))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        for _ in range(50):
            if await _memories_added(orchestrator, "u-1") == 1:
                break
            await asyncio.sleep(0.02)
        assert len(fake_service.memories) == 1
        assert await _memories_added(orchestrator, "u-1") == 1


class TestSavePartialFailures:
    async def test_link_failure_is_partial_and_still_counts(self, orchestrator, fake_service):
        orchestrator.linker.attach = AsyncMock(side_effect=PersistenceError("link table down"))
        result = await orchestrator.save_memory(
            "u-1", "x", message_id="msg-1", chat_id="chat-1"
        )
        assert isinstance(result, PartiallySucceeded)
        assert result.memory_id in fake_service.memories
        assert any("link table down" in e for e in result.secondary_errors)
        assert await _memories_added(orchestrator, "u-1") == 1
        assert result.to_api()["success"] is True

    async def test_usage_failure_is_partial_and_sync_repairs(self, orchestrator, fake_service):
        original = orchestrator.accountant.increment
        orchestrator.accountant.increment = AsyncMock(side_effect=PersistenceError("counter down"))
        result = await orchestrator.save_memory("u-1", "x", message_id="msg-1", chat_id="chat-1")
        assert isinstance(result, PartiallySucceeded)
        assert await orchestrator.get_message_memories("msg-1") is not None
        assert await _memories_added(orchestrator, "u-1") == 0

        orchestrator.accountant.increment = original
        counts = await orchestrator.sync_usage("u-1")
        assert counts[UsageMetric.MEMORIES_ADDED] == 1
        assert await _memories_added(orchestrator, "u-1") == 1


class TestSaveAborts:
    async def test_quota_exceeded_blocks_before_external_write(
        self, db, memory_client, app_settings, fake_service
    ):
        catalog = PlanCatalog(
            {
                **DEFAULT_PLAN_LIMITS,
                PlanId.FREE: {**DEFAULT_PLAN_LIMITS[PlanId.FREE], UsageMetric.MEMORIES_ADDED: 1},
            }
        )
        orchestrator = await MemoryOrchestrator.create(db, memory_client, app_settings, catalog)
        await orchestrator.save_memory("u-1", "first")
        with pytest.raises(QuotaExceededError) as exc_info:
            await orchestrator.save_memory("u-1", "second")
        assert exc_info.value.limit == 1
        assert fake_service.calls["create"] == 1
        assert await _memories_added(orchestrator, "u-1") == 1

    async def test_external_failure_leaves_no_local_trace(self, orchestrator, fake_service):
        fake_service.fail_create_status = 500
        with pytest.raises(ExternalServiceError):
            await orchestrator.save_memory("u-1", "x", message_id="msg-1", chat_id="chat-1")
        assert await orchestrator.get_message_memories("msg-1") is None
        assert await _memories_added(orchestrator, "u-1") == 0

    async def test_unconfigured_service_makes_no_calls(self, db, app_settings, fake_service):
        client = MemoryServiceClient(
            MemoryServiceSettings(api_key=None), transport=fake_service.transport
        )
        orchestrator = await MemoryOrchestrator.create(db, client, app_settings)
        with pytest.raises(ConfigurationError):
            await orchestrator.save_memory("u-1", "x")
        assert fake_service.requests == []
        assert await orchestrator.identity.lookup("u-1") is None
        await client.close()

    @pytest.mark.parametrize(
        "kwargs, message",
        [
            ({"content": "  "}, "content is required"),
            (
                {"content": "x", "message_id": "msg-1"},
                "messageId and chatId must be provided together",
            ),
            ({"content": "x", "memory_type": "video"}, "Unsupported memory type"),
            ({"content": "x", "metadata": {"mood": "happy"}}, "Invalid metadata field"),
        ],
    )
    async def test_invalid_input_rejected_without_calls(
        self, orchestrator, fake_service, kwargs, message
    ):
        with pytest.raises(ValidationError, match=message):
            await orchestrator.save_memory("u-1", **kwargs)
        assert fake_service.requests == []


class TestUpdateDeleteFetch:
    async def test_update_reports_changed_fields(self, orchestrator, fake_service):
        saved = await orchestrator.save_memory("u-1", "old")
        result = await orchestrator.update_memory(
            "u-1", saved.memory_id, content="new", metadata={"topics": ["t"]}
        )
        assert result.success is True
        assert result.updated_fields == ("content", "topics")
        assert fake_service.memories[saved.memory_id]["content"] == "new"
        assert result.to_api()["updatedFields"] == ["content", "topics"]

    async def test_metadata_update_sends_only_given_fields(self, orchestrator, fake_service):
        saved = await orchestrator.save_memory(
            "u-1",
            "likes green tea",
            metadata={
                "topics": ["drinks"],
                "emojiTags": ["🍵"],
                "createdAt": "2024-01-01T00:00:00+00:00",
            },
        )
        result = await orchestrator.update_memory(
            "u-1", saved.memory_id, metadata={"category": "preferences"}
        )
        assert result.updated_fields == ("category",)
        sent = json.loads(fake_service.requests[-1].content)
        assert sent == {"metadata": {"customMetadata": {"category": "preferences"}}}

    async def test_metadata_update_reports_each_field(self, orchestrator, fake_service):
        saved = await orchestrator.save_memory("u-1", "x")
        result = await orchestrator.update_memory(
            "u-1",
            saved.memory_id,
            metadata={"category": "goals", "emojiTags": ["🏃"], "customFields": {"tags": ["a"]}},
        )
        assert result.updated_fields == ("category", "emoji_tags", "custom_fields")
        sent = json.loads(fake_service.requests[-1].content)["metadata"]
        assert sent == {
            "emoji tags": ["🏃"],
            "customMetadata": {"tags": '["a"]', "category": "goals"},
        }

    async def test_update_without_fields_rejected(self, orchestrator):
        with pytest.raises(ValidationError, match="No fields provided for update"):
            await orchestrator.update_memory("u-1", "m-1")

    async def test_update_with_empty_metadata_rejected(self, orchestrator, fake_service):
        with pytest.raises(ValidationError, match="No fields provided for update"):
            await orchestrator.update_memory("u-1", "m-1", metadata={})
        assert fake_service.requests == []

    async def test_delete_keeps_counter_and_link(self, orchestrator, fake_service):
        saved = await orchestrator.save_memory("u-1", "x", message_id="msg-1", chat_id="chat-1")
        result = await orchestrator.delete_memory("u-1", saved.memory_id)
        assert result.success is True
        assert saved.memory_id not in fake_service.memories
        assert await _memories_added(orchestrator, "u-1") == 1
        link = await orchestrator.get_message_memories("msg-1")
        assert [m.memory_id for m in link.memories] == [saved.memory_id]

    async def test_delete_missing_memory(self, orchestrator):
        result = await orchestrator.delete_memory("u-1", "nope")
        assert result.success is False
        assert result.error == "Memory nope not found"

    async def test_delete_already_deleted_is_not_an_error(self, orchestrator, fake_service):
        saved = await orchestrator.save_memory("u-1", "x")
        fake_service.fail_delete = (400, "memory already deleted")
        result = await orchestrator.delete_memory("u-1", saved.memory_id)
        assert result.success is False
        assert result.error == "memory already deleted"

    async def test_fetch_missing_raises(self, orchestrator):
        with pytest.raises(MemoryNotFoundError):
            await orchestrator.fetch_memory("u-1", "nope")

    async def test_fetch_existing(self, orchestrator):
        saved = await orchestrator.save_memory("u-1", "remember this")
        record = await orchestrator.fetch_memory("u-1", saved.memory_id)
        assert record.content == "remember this"


class TestSearch:
    async def test_search_counts_one_per_call(self, orchestrator):
        await orchestrator.save_memory("u-1", "likes tea")
        results = await orchestrator.search_memories("u-1", "tea")
        assert [r.content for r in results] == ["likes tea"]
        summary = await orchestrator.usage_summary("u-1")
        assert summary.metrics[UsageMetric.MEMORIES_SEARCHED].current == 1

    async def test_search_without_identity_returns_empty(self, orchestrator, fake_service):
        assert await orchestrator.search_memories("u-9", "tea") == []
        assert fake_service.calls["search"] == 0
        assert fake_service.calls["provision"] == 0
        summary = await orchestrator.usage_summary("u-9")
        assert summary.metrics[UsageMetric.MEMORIES_SEARCHED].current == 0

    async def test_empty_query_rejected(self, orchestrator):
        with pytest.raises(ValidationError):
            await orchestrator.search_memories("u-1", " ")


class TestUsageSync:
    async def test_sync_unprovisioned_user_does_not_provision(self, orchestrator, fake_service):
        counts = await orchestrator.sync_usage("u-1")
        assert counts[UsageMetric.MEMORIES_ADDED] == 0
        assert fake_service.calls["provision"] == 0

    async def test_sync_all_reconciles_every_user(self, orchestrator, add_subscription):
        await orchestrator.save_memory("u-1", "a")
        await orchestrator.save_memory("u-2", "b")
        await orchestrator.save_memory("u-2", "c")
        await add_subscription("u-3", plan="pro")
        await orchestrator.accountant.repository.set_counts(
            "u-2", {"memories_added": (LIFETIME_PERIOD, 40)}
        )
        report = await orchestrator.sync_all_usage()
        assert report.users_synced == 3
        assert report.failures == {}
        assert await _memories_added(orchestrator, "u-2") == 2

    async def test_sync_all_continues_past_failures(self, orchestrator, fake_service):
        await orchestrator.save_memory("u-1", "a")
        await orchestrator.save_memory("u-2", "b")
        real_reconcile = orchestrator.accountant.reconcile

        async def flaky(user_id):
            if user_id == "u-1":
                raise ExternalServiceError("count failed")
            return await real_reconcile(user_id)

        orchestrator.accountant.reconcile = flaky
        report = await orchestrator.sync_all_usage()
        assert report.users_synced == 1
        assert set(report.failures) == {"u-1"}
