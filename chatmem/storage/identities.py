"""Mapping table between internal users and external memory-service users."""

from typing import Any

from sqlalchemy import select

from .models import ExternalIdentityModel, UserModel
from .utils import dialect_insert


class IdentityRepository:
    """Reads and writes ``external_identities``; rows are never updated."""

    def __init__(self, session_factory: Any) -> None:
        self.session_factory = session_factory

    async def get(self, internal_user_id: str) -> str | None:
        async with self.session_factory() as session:
            r = await session.execute(
                select(ExternalIdentityModel.external_user_id).where(
                    ExternalIdentityModel.internal_user_id == internal_user_id
                )
            )
            return r.scalar_one_or_none()

    async def insert_if_absent(self, internal_user_id: str, external_user_id: str) -> str:
        """Insert the mapping unless one exists; return whichever value is stored.

        A concurrent writer that got there first wins, and its value is returned.
        """
        async with self.session_factory() as session:
            stmt = dialect_insert(session, ExternalIdentityModel.__table__).values(
                internal_user_id=internal_user_id,
                external_user_id=external_user_id,
            )
            await session.execute(stmt.on_conflict_do_nothing(index_elements=["internal_user_id"]))
            r = await session.execute(
                select(ExternalIdentityModel.external_user_id).where(
                    ExternalIdentityModel.internal_user_id == internal_user_id
                )
            )
            return r.scalar_one()

    async def get_email(self, user_id: str) -> str | None:
        async with self.session_factory() as session:
            r = await session.execute(select(UserModel.email).where(UserModel.id == user_id))
            return r.scalar_one_or_none()

    async def list_internal_user_ids(self) -> list[str]:
        async with self.session_factory() as session:
            r = await session.execute(
                select(ExternalIdentityModel.internal_user_id).order_by(
                    ExternalIdentityModel.created_at
                )
            )
            return list(r.scalars().all())
