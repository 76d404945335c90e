"""Subscription plan catalog and limit arithmetic.

Limits are static, so lookups never touch the database. ``UNLIMITED`` (-1)
marks a metric with no ceiling.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field

from ..core.enums import UNLIMITED, PlanId, UsageMetric

APPROACHING_THRESHOLD = 0.8

M = UsageMetric

DEFAULT_PLAN_LIMITS: dict[PlanId, dict[UsageMetric, int]] = {
    PlanId.FREE: {
        M.BASIC_INTERACTIONS: 50,
        M.PREMIUM_INTERACTIONS: 0,
        M.MEMORIES_ADDED: 100,
        M.MEMORIES_SEARCHED: 20,
        M.VOICE_CHATS: 5,
        M.VIDEOS_GENERATED: 2,
    },
    PlanId.BASIC: {
        M.BASIC_INTERACTIONS: 1000,
        M.PREMIUM_INTERACTIONS: 200,
        M.MEMORIES_ADDED: 5000,
        M.MEMORIES_SEARCHED: 1000,
        M.VOICE_CHATS: 100,
        M.VIDEOS_GENERATED: 50,
    },
    PlanId.PRO: {
        M.BASIC_INTERACTIONS: UNLIMITED,
        M.PREMIUM_INTERACTIONS: 500,
        M.MEMORIES_ADDED: 10000,
        M.MEMORIES_SEARCHED: 2000,
        M.VOICE_CHATS: 500,
        M.VIDEOS_GENERATED: 50,
    },
    PlanId.ENTERPRISE: {metric: UNLIMITED for metric in UsageMetric},
}

_UPGRADE_MESSAGES: dict[UsageMetric, tuple[str, str]] = {
    # (free plan, paid plan)
    M.BASIC_INTERACTIONS: (
        "Upgrade to get more basic interactions and access to premium models",
        "Upgrade to get unlimited basic interactions",
    ),
    M.PREMIUM_INTERACTIONS: (
        "Upgrade to access premium AI models with advanced reasoning",
        "Upgrade to get more premium interactions",
    ),
    M.MEMORIES_ADDED: (
        "Upgrade to store more memories and build a larger knowledge base",
        "Upgrade to store even more memories",
    ),
    M.MEMORIES_SEARCHED: (
        "Upgrade to search your memories more frequently",
        "Upgrade to get unlimited memory searches",
    ),
    M.VOICE_CHATS: (
        "Upgrade to have more voice conversations with AI",
        "Upgrade to get unlimited voice chats",
    ),
    M.VIDEOS_GENERATED: (
        "Upgrade to generate more videos",
        "Upgrade to generate unlimited videos",
    ),
}


def usage_percentage(current: int, limit: int) -> float:
    """Share of the allowance used, in percent.

    Unlimited yields 0.0. A zero allowance is reported as fully used (100.0).
    Negative counts floor at 0; values above 100 are kept so drift past the
    limit stays visible.
    """
    if limit == UNLIMITED:
        return 0.0
    if limit <= 0:
        return 100.0
    return max(current, 0) / limit * 100.0


def is_over_limit(current: int, limit: int) -> bool:
    """True once the allowance is exhausted (``current >= limit``)."""
    if limit == UNLIMITED:
        return False
    return current >= limit


def is_approaching_limit(current: int, limit: int, threshold: float = APPROACHING_THRESHOLD) -> bool:
    if limit == UNLIMITED:
        return False
    if limit <= 0:
        return True
    return current / limit >= threshold


def remaining_usage(current: int, limit: int) -> int:
    """Units left in the period; ``UNLIMITED`` when there is no ceiling."""
    if limit == UNLIMITED:
        return UNLIMITED
    return max(0, limit - current)


@dataclass(frozen=True)
class Plan:
    """A plan and its per-metric limits."""

    id: PlanId
    name: str
    limits: Mapping[UsageMetric, int] = field(default_factory=dict)

    def limit_for(self, metric: UsageMetric) -> int:
        return self.limits.get(metric, 0)


class PlanCatalog:
    """Static lookup of plan limits."""

    _NAMES = {
        PlanId.FREE: "Free",
        PlanId.BASIC: "Starter",
        PlanId.PRO: "Pro",
        PlanId.ENTERPRISE: "Enterprise",
    }

    def __init__(self, limits: Mapping[PlanId, Mapping[UsageMetric, int]] | None = None) -> None:
        source = limits if limits is not None else DEFAULT_PLAN_LIMITS
        self._plans = {
            plan_id: Plan(id=plan_id, name=self._NAMES.get(plan_id, plan_id.value), limits=dict(values))
            for plan_id, values in source.items()
        }
        if PlanId.FREE not in self._plans:
            raise ValueError("catalog must define the free plan")

    def get(self, plan_id: str | PlanId | None) -> Plan | None:
        """Plan for ``plan_id`` or None when the id is unknown."""
        if plan_id is None:
            return None
        try:
            key = PlanId(plan_id)
        except ValueError:
            return None
        return self._plans.get(key)

    @property
    def free(self) -> Plan:
        return self._plans[PlanId.FREE]

    def limits_for(self, plan_id: str | PlanId) -> dict[UsageMetric, int]:
        """Limits for ``plan_id``; unknown ids get the free plan's limits."""
        plan = self.get(plan_id) or self.free
        return dict(plan.limits)

    def upgrade_message(self, metric: UsageMetric, plan_id: str | PlanId) -> str:
        messages = _UPGRADE_MESSAGES.get(metric)
        if messages is None:
            return "Upgrade for more features and higher limits"
        free_text, paid_text = messages
        plan = self.get(plan_id)
        return free_text if plan is None or plan.id is PlanId.FREE else paid_text

    def should_show_upgrade(self, usage: Mapping[UsageMetric, int], plan_id: str | PlanId) -> bool:
        """True when any metric is at or near its limit (never for enterprise)."""
        plan = self.get(plan_id) or self.free
        if plan.id is PlanId.ENTERPRISE:
            return False
        for metric, current in usage.items():
            limit = plan.limit_for(metric)
            if is_over_limit(current, limit) or is_approaching_limit(current, limit):
                return True
        return False
