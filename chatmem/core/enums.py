"""Core enums for usage metrics, plans and memory metadata."""

from enum import Enum

# Plan limit value meaning "no ceiling".
UNLIMITED = -1


class UsageMetric(str, Enum):
    """Billable usage counters tracked per user."""

    BASIC_INTERACTIONS = "basic_interactions"
    PREMIUM_INTERACTIONS = "premium_interactions"
    MEMORIES_ADDED = "memories_added"  # Cumulative: total stored memories
    MEMORIES_SEARCHED = "memories_searched"
    VOICE_CHATS = "voice_chats"
    VIDEOS_GENERATED = "videos_generated"

    @property
    def cumulative(self) -> bool:
        """Whether the counter spans the account lifetime instead of a billing period."""
        return self is UsageMetric.MEMORIES_ADDED

    @property
    def wire_name(self) -> str:
        """camelCase name used in HTTP payloads (e.g. ``memoriesAdded``)."""
        head, *rest = self.value.split("_")
        return head + "".join(part.capitalize() for part in rest)

    @classmethod
    def parse(cls, value: str) -> "UsageMetric":
        """Accept either the snake_case value or the camelCase wire name."""
        for metric in cls:
            if value in (metric.value, metric.wire_name):
                return metric
        raise ValueError(f"Unknown usage metric: {value}")


class PlanId(str, Enum):
    """Subscription plans known to the catalog."""

    FREE = "free"
    BASIC = "basic"
    PRO = "pro"
    ENTERPRISE = "enterprise"


class SubscriptionStatus(str, Enum):
    """Billing status written by the billing collaborator."""

    FREE = "free"
    ACTIVE = "active"
    TRIALING = "trialing"
    CANCELED = "canceled"
    PAST_DUE = "past_due"
    UNPAID = "unpaid"

    @property
    def grants_plan(self) -> bool:
        """Statuses under which the subscribed plan's limits apply."""
        return self in (
            SubscriptionStatus.ACTIVE,
            SubscriptionStatus.TRIALING,
            SubscriptionStatus.PAST_DUE,
        )


class MemoryCategory(str, Enum):
    """Category tag stored with each memory."""

    PREFERENCES = "preferences"
    GOALS = "goals"
    TASKS = "tasks"
    KNOWLEDGE = "knowledge"


class MemoryContentType(str, Enum):
    """Content type accepted by the external memory service."""

    TEXT = "text"
    CODE_SNIPPET = "code_snippet"
    DOCUMENT = "document"
