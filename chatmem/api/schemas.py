"""API request schemas (camelCase on the wire)."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..core.enums import MemoryContentType


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AttachMessageMemoriesRequest(_CamelModel):
    """Snapshot of memories produced by one message."""

    message_id: str = Field(min_length=1)
    chat_id: str = Field(min_length=1)
    memories: list[dict[str, Any]]


class SaveMemoryRequest(_CamelModel):
    content: str = Field(min_length=1)
    type: MemoryContentType = MemoryContentType.TEXT
    metadata: dict[str, Any] | None = None
    message_id: str | None = None
    chat_id: str | None = None


class UpdateMemoryRequest(_CamelModel):
    memory_id: str = Field(min_length=1)
    content: str | None = None
    type: MemoryContentType | None = None
    metadata: dict[str, Any] | None = None


class DeleteMemoryRequest(_CamelModel):
    memory_id: str = Field(min_length=1)
    reason: str | None = None


class ConsumeUsageRequest(_CamelModel):
    """Metric in snake_case or camelCase (``basic_interactions`` / ``basicInteractions``)."""

    metric: str
