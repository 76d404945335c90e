"""Core Pydantic schemas for memory metadata, message links and usage."""

import json
from datetime import UTC, datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from .enums import MemoryCategory, PlanId, UsageMetric

# Top-level keys understood on the external service's metadata object.
_WIRE_FIELDS = {
    "sourceType": "source_type",
    "sourceUrl": "source_url",
    "conversationId": "conversation_id",
    "workspace_id": "workspace_id",
    "topics": "topics",
    "emoji tags": "emoji_tags",
    "hierarchical_structures": "hierarchical_structures",
    "createdAt": "created_at",
}


class MemoryMetadata(BaseModel):
    """Closed set of metadata fields attached to a memory.

    Anything that is not a well-known field goes in ``custom_fields``;
    unknown top-level keys are rejected.
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    category: MemoryCategory | None = None
    source_type: str | None = Field(default=None, alias="sourceType")
    source_url: str | None = Field(default=None, alias="sourceUrl")
    conversation_id: str | None = Field(default=None, alias="conversationId")
    workspace_id: str | None = None
    topics: list[str] = Field(default_factory=list)
    emoji_tags: list[str] = Field(default_factory=list, alias="emojiTags")
    hierarchical_structures: str | None = Field(default=None, alias="hierarchicalStructures")
    created_at: datetime | None = Field(default=None, alias="createdAt")
    custom_fields: dict[str, Any] = Field(default_factory=dict, alias="customFields")

    def to_wire(
        self,
        *,
        external_user_id: str | None = None,
        app_user_id: str | None = None,
        default_source_type: str = "chat",
    ) -> dict[str, Any]:
        """Render the payload the external service expects.

        Standard fields sit at the top level; category and custom fields live
        under ``customMetadata`` with list/dict values JSON-encoded so the
        service can filter on them.
        """
        created = self.created_at or datetime.now(UTC)
        wire: dict[str, Any] = {
            "sourceType": self.source_type or default_source_type,
            "createdAt": created.isoformat(),
            "topics": list(self.topics),
            "emoji tags": list(self.emoji_tags),
        }
        if self.source_url:
            wire["sourceUrl"] = self.source_url
        if self.conversation_id:
            wire["conversationId"] = self.conversation_id
        if self.workspace_id:
            wire["workspace_id"] = self.workspace_id
        if self.hierarchical_structures:
            wire["hierarchical_structures"] = self.hierarchical_structures
        if external_user_id:
            wire["user_id"] = external_user_id
        if app_user_id:
            wire["external_user_id"] = app_user_id

        custom: dict[str, Any] = {}
        for key, value in self.custom_fields.items():
            custom[key] = json.dumps(value) if isinstance(value, (list, dict)) else value
        if self.category is not None:
            custom["category"] = self.category.value
        if app_user_id:
            custom["app_user_id"] = app_user_id
        wire["customMetadata"] = custom
        return wire

    def _given(self) -> dict[str, Any]:
        # Explicit None and an empty custom_fields carry nothing to change.
        return {
            name: value
            for name, value in self.model_dump(exclude_unset=True).items()
            if value is not None and not (name == "custom_fields" and not value)
        }

    def set_fields(self) -> list[str]:
        """Fields the caller supplied with a value, in declaration order."""
        given = self._given()
        return [name for name in type(self).model_fields if name in given]

    def to_wire_patch(self) -> dict[str, Any]:
        """Render only the fields the caller supplied, for partial updates.

        Nothing is defaulted, so fields left out keep their stored values.
        """
        given = self._given()
        wire: dict[str, Any] = {}
        for wire_key, field_name in _WIRE_FIELDS.items():
            if field_name not in given:
                continue
            value = given[field_name]
            wire[wire_key] = value.isoformat() if isinstance(value, datetime) else value

        custom: dict[str, Any] = {}
        for key, value in given.get("custom_fields", {}).items():
            custom[key] = json.dumps(value) if isinstance(value, (list, dict)) else value
        if "category" in given:
            custom["category"] = self.category.value
        if custom:
            wire["customMetadata"] = custom
        return wire

    @classmethod
    def from_wire(cls, raw: Any) -> "MemoryMetadata":
        """Parse metadata returned by the service (object or JSON string), leniently."""
        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except ValueError:
                raw = {}
        if not isinstance(raw, dict):
            raw = {}
        custom = raw.get("customMetadata") or {}
        if isinstance(custom, str):
            try:
                custom = json.loads(custom)
            except ValueError:
                custom = {}
        custom = dict(custom) if isinstance(custom, dict) else {}

        values: dict[str, Any] = {}
        for wire_key, field_name in _WIRE_FIELDS.items():
            if raw.get(wire_key) is not None:
                values[field_name] = raw[wire_key]
        category = custom.pop("category", None)
        if category in {c.value for c in MemoryCategory}:
            values["category"] = category
        custom.pop("app_user_id", None)
        values["custom_fields"] = custom
        return cls.model_validate(values)


class MemorySummary(BaseModel):
    """Snapshot of one memory as attached to a message."""

    model_config = ConfigDict(populate_by_name=True)

    memory_id: str = Field(validation_alias=AliasChoices("memory_id", "memoryId", "id"))
    content: str = ""
    category: str | None = None
    created_at: datetime | None = Field(
        default=None, validation_alias=AliasChoices("created_at", "createdAt")
    )
    metadata: dict[str, Any] | None = None

    @field_validator("memory_id", mode="before")
    @classmethod
    def _coerce_memory_id(cls, v: Any) -> Any:
        if v is None or (isinstance(v, str) and not v.strip()):
            raise ValueError("memory id must be non-empty")
        return str(v)

    def to_api(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.memory_id, "content": self.content}
        if self.category is not None:
            data["category"] = self.category
        if self.created_at is not None:
            data["createdAt"] = self.created_at.isoformat()
        if self.metadata:
            data["metadata"] = self.metadata
        return data


class MessageMemoryLink(BaseModel):
    """Local association between one chat message and the memories it produced."""

    model_config = ConfigDict(from_attributes=True)

    message_id: str
    chat_id: str
    user_id: str | None = None
    memories: list[MemorySummary] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None


class MemoryRecord(BaseModel):
    """A memory as returned by the external service."""

    memory_id: str
    content: str = ""
    memory_type: str | None = None
    metadata: MemoryMetadata = Field(default_factory=MemoryMetadata)
    created_at: datetime | None = None
    score: float | None = None

    def to_api(self) -> dict[str, Any]:
        return {
            "id": self.memory_id,
            "content": self.content,
            "type": self.memory_type,
            "category": self.metadata.category.value if self.metadata.category else None,
            "createdAt": (self.created_at or self.metadata.created_at).isoformat()
            if (self.created_at or self.metadata.created_at)
            else None,
            "metadata": self.metadata.model_dump(mode="json", exclude_defaults=True),
            "score": self.score,
        }


# ---- Usage ----


class UsageCheck(BaseModel):
    """Read-only answer to "may this user perform one more X?"."""

    metric: UsageMetric
    allowed: bool
    current: int
    limit: int
    percentage: float
    should_show_upgrade: bool = False
    reason: str | None = None


class IncrementResult(BaseModel):
    """Outcome of a check-and-increment."""

    metric: UsageMetric
    allowed: bool
    new_count: int
    limit: int


class MetricUsage(BaseModel):
    current: int
    limit: int
    percentage: float
    remaining: int


class UsageSummary(BaseModel):
    """Per-metric usage for a user's current period."""

    user_id: str
    plan: PlanId
    plan_fallback: bool = False
    period_start: datetime
    metrics: dict[UsageMetric, MetricUsage]

    def to_api(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            metric.wire_name: usage.model_dump() for metric, usage in self.metrics.items()
        }
        data["plan"] = self.plan.value
        data["planFallback"] = self.plan_fallback
        data["periodStart"] = self.period_start.isoformat()
        return data


class UsageWarning(BaseModel):
    metric: UsageMetric
    current: int
    limit: int
    percentage: float
    over_limit: bool
    message: str
