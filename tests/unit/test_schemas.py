"""Unit tests for metadata, summaries and metric naming."""

import json
from datetime import UTC, datetime

import pytest
from pydantic import ValidationError

from chatmem.core.enums import MemoryCategory, UsageMetric
from chatmem.core.schemas import MemoryMetadata, MemorySummary


class TestMemoryMetadata:
    def test_unknown_top_level_key_rejected(self):
        with pytest.raises(ValidationError):
            MemoryMetadata.model_validate({"category": "goals", "mood": "happy"})

    def test_camel_case_input_accepted(self):
        meta = MemoryMetadata.model_validate(
            {"sourceType": "chat", "conversationId": "c-1", "customFields": {"tool": "x"}}
        )
        assert meta.source_type == "chat"
        assert meta.conversation_id == "c-1"
        assert meta.custom_fields == {"tool": "x"}

    def test_to_wire_layout(self):
        meta = MemoryMetadata(
            category=MemoryCategory.GOALS,
            topics=["fitness"],
            emoji_tags=["🏃"],
            created_at=datetime(2026, 1, 2, tzinfo=UTC),
            custom_fields={"tags": ["a", "b"], "priority": 2},
        )
        wire = meta.to_wire(external_user_id="ext-1", app_user_id="u-1")
        assert wire["user_id"] == "ext-1"
        assert wire["external_user_id"] == "u-1"
        assert wire["sourceType"] == "chat"
        assert wire["topics"] == ["fitness"]
        assert wire["emoji tags"] == ["🏃"]
        assert wire["createdAt"].startswith("2026-01-02")
        custom = wire["customMetadata"]
        assert custom["category"] == "goals"
        assert custom["app_user_id"] == "u-1"
        assert custom["priority"] == 2
        assert json.loads(custom["tags"]) == ["a", "b"]

    def test_patch_renders_only_given_fields(self):
        meta = MemoryMetadata.model_validate(
            {"topics": [], "createdAt": "2024-01-01T00:00:00+00:00", "sourceType": None}
        )
        assert meta.set_fields() == ["topics", "created_at"]
        assert meta.to_wire_patch() == {
            "topics": [],
            "createdAt": "2024-01-01T00:00:00+00:00",
        }

    def test_patch_of_empty_metadata_is_empty(self):
        assert MemoryMetadata().to_wire_patch() == {}
        assert MemoryMetadata.model_validate({"customFields": {}}).set_fields() == []

    def test_from_wire_accepts_json_string(self):
        raw = json.dumps(
            {
                "sourceType": "chat",
                "topics": ["t"],
                "customMetadata": {"category": "tasks", "app_user_id": "u-1", "tool": "todo"},
            }
        )
        meta = MemoryMetadata.from_wire(raw)
        assert meta.category is MemoryCategory.TASKS
        assert meta.topics == ["t"]
        assert meta.custom_fields == {"tool": "todo"}

    def test_from_wire_tolerates_garbage(self):
        assert MemoryMetadata.from_wire("not json") == MemoryMetadata()
        assert MemoryMetadata.from_wire(None) == MemoryMetadata()


class TestMemorySummary:
    @pytest.mark.parametrize("key", ["memory_id", "memoryId", "id"])
    def test_accepts_id_aliases(self, key):
        assert MemorySummary.model_validate({key: "m-1", "content": "x"}).memory_id == "m-1"

    def test_missing_id_rejected(self):
        with pytest.raises(ValidationError):
            MemorySummary.model_validate({"content": "x"})

    def test_to_api_uses_camel_case(self):
        s = MemorySummary(memory_id="m-1", content="x", created_at=datetime(2026, 1, 1))
        assert s.to_api() == {"id": "m-1", "content": "x", "createdAt": "2026-01-01T00:00:00"}


class TestUsageMetric:
    def test_wire_name(self):
        assert UsageMetric.MEMORIES_ADDED.wire_name == "memoriesAdded"
        assert UsageMetric.VIDEOS_GENERATED.wire_name == "videosGenerated"

    def test_parse_both_spellings(self):
        assert UsageMetric.parse("voiceChats") is UsageMetric.VOICE_CHATS
        assert UsageMetric.parse("voice_chats") is UsageMetric.VOICE_CHATS

    def test_parse_unknown(self):
        with pytest.raises(ValueError):
            UsageMetric.parse("tokens")

    def test_only_memories_added_is_cumulative(self):
        assert [m for m in UsageMetric if m.cumulative] == [UsageMetric.MEMORIES_ADDED]
