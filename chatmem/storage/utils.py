"""Shared storage utilities (datetime normalization, dialect-aware upserts)."""

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

# Period key for lifetime (cumulative) counters.
LIFETIME_PERIOD = datetime(1970, 1, 1)


def naive_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Convert to naive UTC for TIMESTAMP WITHOUT TIME ZONE columns."""
    if dt is None:
        return None
    if dt.tzinfo:
        return dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def dialect_insert(session: AsyncSession, table: Any):
    """Return an INSERT construct that supports ``on_conflict_*`` for the bound dialect."""
    name = session.bind.dialect.name if session.bind is not None else "postgresql"
    if name == "sqlite":
        return sqlite.insert(table)
    return postgresql.insert(table)
