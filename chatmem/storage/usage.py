"""Usage counters, usage ledger and subscription reads."""

import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import distinct, func, select, union, update

from ..core.enums import UNLIMITED
from .models import SubscriptionModel, UsageCounterModel, UsageEventModel
from .utils import dialect_insert, naive_utc


class UsageRepository:
    """Counter rows keyed by (user, metric, period_start) plus the append-only event ledger."""

    def __init__(self, session_factory: Any) -> None:
        self.session_factory = session_factory

    async def get_subscription(self, user_id: str) -> SubscriptionModel | None:
        async with self.session_factory() as session:
            r = await session.execute(
                select(SubscriptionModel).where(SubscriptionModel.user_id == user_id)
            )
            return r.scalar_one_or_none()

    async def get_count(self, user_id: str, metric: str, period_start: datetime) -> int:
        async with self.session_factory() as session:
            return await self._read_count(session, user_id, metric, period_start)

    async def get_counts(self, user_id: str, periods: dict[str, datetime]) -> dict[str, int]:
        """Counts for several metrics at once; missing rows read as 0."""
        async with self.session_factory() as session:
            r = await session.execute(
                select(
                    UsageCounterModel.metric,
                    UsageCounterModel.period_start,
                    UsageCounterModel.count,
                ).where(UsageCounterModel.user_id == user_id)
            )
            rows = {(metric, start): count for metric, start, count in r.all()}
        return {metric: rows.get((metric, start), 0) for metric, start in periods.items()}

    async def increment(
        self,
        user_id: str,
        metric: str,
        period_start: datetime,
        reference: str | None = None,
    ) -> int:
        """Unconditionally add one; returns the new count."""
        async with self.session_factory() as session:
            await self._ensure_counter(session, user_id, metric, period_start)
            await session.execute(
                self._bump(user_id, metric, period_start)
            )
            self._record_event(session, user_id, metric, period_start, reference)
            return await self._read_count(session, user_id, metric, period_start)

    async def increment_with_ceiling(
        self,
        user_id: str,
        metric: str,
        period_start: datetime,
        limit: int,
        reference: str | None = None,
    ) -> tuple[bool, int]:
        """Add one only while ``count < limit``, as a single conditional UPDATE.

        Returns ``(applied, count_after)``.
        """
        async with self.session_factory() as session:
            await self._ensure_counter(session, user_id, metric, period_start)
            stmt = self._bump(user_id, metric, period_start)
            if limit != UNLIMITED:
                stmt = stmt.where(UsageCounterModel.count < limit)
            result = await session.execute(stmt)
            applied = result.rowcount == 1
            if applied:
                self._record_event(session, user_id, metric, period_start, reference)
            return applied, await self._read_count(session, user_id, metric, period_start)

    async def count_events(self, user_id: str, metric: str, period_start: datetime) -> int:
        async with self.session_factory() as session:
            r = await session.execute(
                select(func.count(UsageEventModel.id)).where(
                    UsageEventModel.user_id == user_id,
                    UsageEventModel.metric == metric,
                    UsageEventModel.period_start == period_start,
                )
            )
            return int(r.scalar_one())

    async def set_counts(self, user_id: str, counts: dict[str, tuple[datetime, int]]) -> None:
        """Overwrite several counters in one transaction."""
        now = naive_utc(datetime.now(UTC))
        async with self.session_factory() as session:
            for metric, (period_start, count) in counts.items():
                stmt = dialect_insert(session, UsageCounterModel.__table__).values(
                    id=uuid.uuid4(),
                    user_id=user_id,
                    metric=metric,
                    period_start=period_start,
                    count=count,
                    updated_at=now,
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=["user_id", "metric", "period_start"],
                    set_={"count": stmt.excluded.count, "updated_at": stmt.excluded.updated_at},
                )
                await session.execute(stmt)

    async def list_user_ids(self) -> list[str]:
        """Every user that has a counter row or a subscription."""
        async with self.session_factory() as session:
            q = union(
                select(distinct(UsageCounterModel.user_id)),
                select(distinct(SubscriptionModel.user_id)),
            )
            r = await session.execute(q)
            return sorted(row[0] for row in r.all())

    # ---- internals ----

    @staticmethod
    async def _ensure_counter(session, user_id: str, metric: str, period_start: datetime) -> None:
        stmt = dialect_insert(session, UsageCounterModel.__table__).values(
            id=uuid.uuid4(),
            user_id=user_id,
            metric=metric,
            period_start=period_start,
            count=0,
            updated_at=naive_utc(datetime.now(UTC)),
        )
        await session.execute(
            stmt.on_conflict_do_nothing(index_elements=["user_id", "metric", "period_start"])
        )

    @staticmethod
    def _bump(user_id: str, metric: str, period_start: datetime):
        return (
            update(UsageCounterModel)
            .where(
                UsageCounterModel.user_id == user_id,
                UsageCounterModel.metric == metric,
                UsageCounterModel.period_start == period_start,
            )
            .values(
                count=UsageCounterModel.count + 1,
                updated_at=naive_utc(datetime.now(UTC)),
            )
            .execution_options(synchronize_session=False)
        )

    @staticmethod
    def _record_event(
        session, user_id: str, metric: str, period_start: datetime, reference: str | None
    ) -> None:
        session.add(
            UsageEventModel(
                user_id=user_id,
                metric=metric,
                period_start=period_start,
                reference=reference,
                occurred_at=naive_utc(datetime.now(UTC)),
            )
        )

    @staticmethod
    async def _read_count(session, user_id: str, metric: str, period_start: datetime) -> int:
        r = await session.execute(
            select(UsageCounterModel.count).where(
                UsageCounterModel.user_id == user_id,
                UsageCounterModel.metric == metric,
                UsageCounterModel.period_start == period_start,
            )
        )
        return r.scalar_one_or_none() or 0
