"""Usage accounting: quota checks, increments and reconciliation."""

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime

import structlog

from ..core.enums import PlanId, SubscriptionStatus, UsageMetric
from ..core.exceptions import PlanLookupError, QuotaExceededError
from ..core.schemas import IncrementResult, MetricUsage, UsageCheck, UsageSummary, UsageWarning
from ..storage.usage import UsageRepository
from ..storage.utils import LIFETIME_PERIOD, naive_utc
from ..utils.metrics import USAGE_INCREMENTS, USAGE_RECONCILIATIONS
from .plans import (
    UNLIMITED,
    Plan,
    PlanCatalog,
    is_approaching_limit,
    is_over_limit,
    remaining_usage,
    usage_percentage,
)

logger = structlog.get_logger(__name__)

MemoryCounter = Callable[[str], Awaitable[int]]

_METRIC_LABELS = {
    UsageMetric.BASIC_INTERACTIONS: "basic interaction",
    UsageMetric.PREMIUM_INTERACTIONS: "premium interaction",
    UsageMetric.MEMORIES_SEARCHED: "memory search",
    UsageMetric.VOICE_CHATS: "voice chat",
    UsageMetric.VIDEOS_GENERATED: "video generation",
}


def percentages(
    usage: Mapping[UsageMetric, int],
    limits: Mapping[UsageMetric, int],
    plan_id: str | PlanId,
    catalog: PlanCatalog | None = None,
) -> dict[UsageMetric, float]:
    """Percentage of allowance used per metric.

    Metrics absent from ``usage`` count as 0; metrics absent from ``limits``
    take the plan's declared limit.
    """
    catalog = catalog or PlanCatalog()
    declared = catalog.limits_for(plan_id)
    result: dict[UsageMetric, float] = {}
    for metric in UsageMetric:
        limit = limits.get(metric, declared.get(metric, 0))
        result[metric] = usage_percentage(usage.get(metric, 0), limit)
    return result


def billing_period_start(subscription, now: datetime | None = None) -> datetime:
    """Start of the period containing ``now``.

    Uses the subscription's current period when ``now`` falls inside it,
    otherwise the first day of the current UTC month.
    """
    now = naive_utc(now or datetime.now(UTC))
    if subscription is not None:
        start = naive_utc(subscription.current_period_start)
        end = naive_utc(subscription.current_period_end)
        if start is not None and end is not None and start <= now < end:
            return start.replace(microsecond=0)
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


@dataclass
class PlanContext:
    """Plan and period resolved for one user at one point in time."""

    plan: Plan
    period_start: datetime
    fallback: bool = False

    def period_for(self, metric: UsageMetric) -> datetime:
        return LIFETIME_PERIOD if metric.cumulative else self.period_start


class UsageAccountant:
    """Tracks per-user usage counters against subscription plan limits."""

    def __init__(
        self,
        repository: UsageRepository,
        catalog: PlanCatalog | None = None,
        memory_counter: MemoryCounter | None = None,
        atomic: bool = True,
        warning_threshold: float = 80.0,
    ) -> None:
        self.repository = repository
        self.catalog = catalog or PlanCatalog()
        self.memory_counter = memory_counter
        self.atomic = atomic
        self.warning_threshold = warning_threshold

    # ---- plan resolution ----

    async def resolve_plan(self, user_id: str) -> PlanContext:
        """Plan and period for ``user_id``; degrades to the free plan when lookup fails."""
        subscription = await self.repository.get_subscription(user_id)
        period_start = billing_period_start(subscription)
        try:
            plan = self._plan_for(user_id, subscription)
        except PlanLookupError as e:
            logger.warning("plan_lookup_failed", user_id=user_id, error=str(e), fallback="free")
            return PlanContext(plan=self.catalog.free, period_start=period_start, fallback=True)
        return PlanContext(plan=plan, period_start=period_start)

    def _plan_for(self, user_id: str, subscription) -> Plan:
        if subscription is None:
            raise PlanLookupError(user_id)
        plan = self.catalog.get(subscription.plan)
        if plan is None:
            raise PlanLookupError(user_id, subscription.plan)
        try:
            status = SubscriptionStatus(subscription.status)
        except ValueError:
            status = SubscriptionStatus.CANCELED
        if plan.id is not PlanId.FREE and not status.grants_plan:
            return self.catalog.free
        return plan

    # ---- checks ----

    async def check(self, user_id: str, metric: UsageMetric) -> UsageCheck:
        """Read-only: may the user perform one more ``metric`` action?"""
        ctx = await self.resolve_plan(user_id)
        limit = ctx.plan.limit_for(metric)
        current = await self.repository.get_count(user_id, metric.value, ctx.period_for(metric))
        allowed = not is_over_limit(current, limit)
        percentage = usage_percentage(current, limit)
        return UsageCheck(
            metric=metric,
            allowed=allowed,
            current=current,
            limit=limit,
            percentage=percentage,
            should_show_upgrade=limit != UNLIMITED and percentage >= self.warning_threshold,
            reason=None if allowed else self._limit_reason(metric, limit, ctx.plan),
        )

    async def ensure_allowed(self, user_id: str, metric: UsageMetric) -> UsageCheck:
        """Like ``check`` but raises ``QuotaExceededError`` when the limit is reached."""
        result = await self.check(user_id, metric)
        if not result.allowed:
            logger.info(
                "usage_limit_reached",
                user_id=user_id,
                metric=metric.value,
                current=result.current,
                limit=result.limit,
            )
            raise QuotaExceededError(metric, result.limit, result.current, result.reason)
        return result

    def _limit_reason(self, metric: UsageMetric, limit: int, plan: Plan) -> str:
        if metric is UsageMetric.MEMORIES_ADDED:
            return (
                f"You've reached your storage limit of {limit} memories. "
                "Please upgrade your plan to store more memories."
            )
        label = _METRIC_LABELS.get(metric, metric.value.replace("_", " "))
        return (
            f"You've reached your {label} limit of {limit} for this billing period. "
            f"{self.catalog.upgrade_message(metric, plan.id)}."
        )

    # ---- increments ----

    async def check_and_increment(
        self,
        user_id: str,
        metric: UsageMetric,
        reference: str | None = None,
    ) -> IncrementResult:
        """Consume one unit if the plan allows it.

        In atomic mode the ceiling is enforced by the UPDATE itself, so two
        callers racing at ``limit - 1`` cannot both succeed. Otherwise the
        read and the write are separate transactions and may overshoot.
        """
        ctx = await self.resolve_plan(user_id)
        limit = ctx.plan.limit_for(metric)
        period = ctx.period_for(metric)
        if self.atomic:
            allowed, count = await self.repository.increment_with_ceiling(
                user_id, metric.value, period, limit, reference
            )
        else:
            current = await self.repository.get_count(user_id, metric.value, period)
            allowed = not is_over_limit(current, limit)
            if allowed:
                count = await self.repository.increment(user_id, metric.value, period, reference)
            else:
                count = current
        USAGE_INCREMENTS.labels(
            metric=metric.value, outcome="applied" if allowed else "rejected"
        ).inc()
        logger.debug(
            "usage_check_and_increment",
            user_id=user_id,
            metric=metric.value,
            allowed=allowed,
            count=count,
            limit=limit,
        )
        return IncrementResult(metric=metric, allowed=allowed, new_count=count, limit=limit)

    async def increment(
        self,
        user_id: str,
        metric: UsageMetric,
        reference: str | None = None,
    ) -> int:
        """Unconditionally record one successful action; returns the new count."""
        subscription = await self.repository.get_subscription(user_id)
        period = LIFETIME_PERIOD if metric.cumulative else billing_period_start(subscription)
        count = await self.repository.increment(user_id, metric.value, period, reference)
        USAGE_INCREMENTS.labels(metric=metric.value, outcome="applied").inc()
        return count

    # ---- reconciliation ----

    async def reconcile(self, user_id: str) -> dict[UsageMetric, int]:
        """Recompute every counter from authoritative sources and overwrite the cache.

        ``memories_added`` comes from the external memory count when a counter
        is wired in; everything else from the local usage ledger. All values
        are computed before any counter is written.
        """
        ctx = await self.resolve_plan(user_id)
        counts: dict[UsageMetric, int] = {}
        for metric in UsageMetric:
            if metric is UsageMetric.MEMORIES_ADDED and self.memory_counter is not None:
                counts[metric] = await self.memory_counter(user_id)
            else:
                counts[metric] = await self.repository.count_events(
                    user_id, metric.value, ctx.period_for(metric)
                )
        await self.repository.set_counts(
            user_id,
            {metric.value: (ctx.period_for(metric), count) for metric, count in counts.items()},
        )
        USAGE_RECONCILIATIONS.labels(status="success").inc()
        logger.info(
            "usage_reconciled",
            user_id=user_id,
            counts={metric.value: count for metric, count in counts.items()},
        )
        return counts

    # ---- reporting ----

    async def summary(self, user_id: str) -> UsageSummary:
        ctx = await self.resolve_plan(user_id)
        counts = await self.repository.get_counts(
            user_id, {metric.value: ctx.period_for(metric) for metric in UsageMetric}
        )
        usage = {metric: counts.get(metric.value, 0) for metric in UsageMetric}
        limits = dict(ctx.plan.limits)
        pct = percentages(usage, limits, ctx.plan.id, self.catalog)
        return UsageSummary(
            user_id=user_id,
            plan=ctx.plan.id,
            plan_fallback=ctx.fallback,
            period_start=ctx.period_start,
            metrics={
                metric: MetricUsage(
                    current=usage[metric],
                    limit=ctx.plan.limit_for(metric),
                    percentage=pct[metric],
                    remaining=remaining_usage(usage[metric], ctx.plan.limit_for(metric)),
                )
                for metric in UsageMetric
            },
        )

    async def warnings(self, user_id: str) -> tuple[list[UsageWarning], bool]:
        """Metrics at or near their limit, plus whether to prompt an upgrade."""
        summary = await self.summary(user_id)
        result: list[UsageWarning] = []
        threshold = self.warning_threshold / 100.0
        for metric, usage in summary.metrics.items():
            if usage.limit == UNLIMITED:
                continue
            over = is_over_limit(usage.current, usage.limit)
            if over or is_approaching_limit(usage.current, usage.limit, threshold):
                result.append(
                    UsageWarning(
                        metric=metric,
                        current=usage.current,
                        limit=usage.limit,
                        percentage=usage.percentage,
                        over_limit=over,
                        message=self.catalog.upgrade_message(metric, summary.plan),
                    )
                )
        should_notify = self.catalog.should_show_upgrade(
            {metric: usage.current for metric, usage in summary.metrics.items()},
            summary.plan,
        )
        return result, should_notify
