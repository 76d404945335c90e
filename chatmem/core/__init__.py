"""Core types and configuration for the chat memory service."""

from .config import Settings, get_settings
from .enums import MemoryCategory, MemoryContentType, PlanId, SubscriptionStatus, UsageMetric
from .schemas import MemoryMetadata, MemoryRecord, MemorySummary, MessageMemoryLink

__all__ = [
    "get_settings",
    "Settings",
    "MemoryCategory",
    "MemoryContentType",
    "PlanId",
    "SubscriptionStatus",
    "UsageMetric",
    "MemoryMetadata",
    "MemoryRecord",
    "MemorySummary",
    "MessageMemoryLink",
]
