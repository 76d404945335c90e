"""SQLAlchemy models for the local relational mirror."""

import uuid
from datetime import UTC, datetime

from sqlalchemy import JSON, Column, DateTime, Index, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests).
_JSON = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Declarative base for all storage models."""

    pass


class UserModel(Base):
    """Application users. Owned by the auth collaborator; read for email only."""

    __tablename__ = "users"

    id = Column(String(100), primary_key=True)
    email = Column(String(320), nullable=True)
    created_at = Column(DateTime, default=_utcnow)


class SubscriptionModel(Base):
    """Plan assignment written by the billing collaborator."""

    __tablename__ = "subscriptions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(String(100), nullable=False, unique=True, index=True)
    plan = Column(String(30), nullable=False, default="free")
    status = Column(String(20), nullable=False, default="free")
    current_period_start = Column(DateTime, nullable=True)
    current_period_end = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)


class ExternalIdentityModel(Base):
    """Internal user -> external memory-service user. Immutable once written."""

    __tablename__ = "external_identities"

    internal_user_id = Column(String(100), primary_key=True)
    external_user_id = Column(String(200), nullable=False)
    created_at = Column(DateTime, default=_utcnow, nullable=False)


class MessageMemoryModel(Base):
    """Point-in-time snapshot of the memories a message produced."""

    __tablename__ = "message_memories"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    message_id = Column(String(100), nullable=False, unique=True)
    chat_id = Column(String(100), nullable=False, index=True)
    user_id = Column(String(100), nullable=True, index=True)
    memories = Column(_JSON, nullable=False, default=list)
    created_at = Column(DateTime, default=_utcnow, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)


class UsageCounterModel(Base):
    """Cached usage count per (user, metric, period)."""

    __tablename__ = "usage_counters"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(String(100), nullable=False)
    metric = Column(String(40), nullable=False)
    period_start = Column(DateTime, nullable=False)
    count = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "metric", "period_start", name="uq_usage_counter_period"),
        Index("ix_usage_counters_user", "user_id"),
    )


class UsageEventModel(Base):
    """Append-only ledger of successful billable actions."""

    __tablename__ = "usage_events"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(String(100), nullable=False)
    metric = Column(String(40), nullable=False)
    period_start = Column(DateTime, nullable=False)
    reference = Column(Text, nullable=True)  # e.g. external memory id
    occurred_at = Column(DateTime, default=_utcnow, nullable=False)

    __table_args__ = (
        Index("ix_usage_events_user_metric_period", "user_id", "metric", "period_start"),
    )
