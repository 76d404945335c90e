"""Internal user -> external memory-service identity, provisioned at most once."""

import asyncio
from collections import Counter

import structlog
from cachetools import LRUCache  # type: ignore[import-untyped]

from ..core.exceptions import ExternalServiceError, IdentityProvisioningError
from ..storage.identities import IdentityRepository
from ..utils.metrics import IDENTITY_PROVISIONS
from .client import MemoryServiceClient

logger = structlog.get_logger(__name__)


class IdentityResolver:
    """Resolves (and on first use provisions) a user's external memory identity.

    Lookup order is in-process cache, then the mapping table, then the
    memory service. Concurrent first calls for one user in this process
    share a lock, so only one of them provisions. Across processes the
    primary key on the mapping table plus a deterministic ``external_id``
    make the losing writer adopt the stored value.
    """

    def __init__(
        self,
        repository: IdentityRepository,
        client: MemoryServiceClient,
        cache_size: int = 10_000,
        external_id_prefix: str | None = None,
        source: str | None = None,
    ) -> None:
        self.repository = repository
        self.client = client
        self._cache: LRUCache[str, str] = LRUCache(maxsize=cache_size)
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: Counter[str] = Counter()
        self.external_id_prefix = (
            external_id_prefix
            if external_id_prefix is not None
            else client.settings.external_id_prefix
        )
        self.source = source or client.settings.source_type

    def external_id_for(self, internal_user_id: str) -> str:
        return f"{self.external_id_prefix}{internal_user_id}"

    async def lookup(self, internal_user_id: str) -> str | None:
        """Existing mapping only; never provisions."""
        cached = self._cache.get(internal_user_id)
        if cached is not None:
            return cached
        stored = await self.repository.get(internal_user_id)
        if stored is not None:
            self._cache[internal_user_id] = stored
        return stored

    async def resolve(self, internal_user_id: str) -> str:
        """Return the external user id, provisioning it on first use."""
        self.client.ensure_configured()
        cached = self._cache.get(internal_user_id)
        if cached is not None:
            return cached

        lock = self._locks.setdefault(internal_user_id, asyncio.Lock())
        self._lock_users[internal_user_id] += 1
        try:
            async with lock:
                existing = await self.lookup(internal_user_id)
                if existing is not None:
                    return existing
                external_user_id = await self._provision(internal_user_id)
                stored = await self.repository.insert_if_absent(
                    internal_user_id, external_user_id
                )
                if stored != external_user_id:
                    logger.info(
                        "identity_race_lost",
                        user_id=internal_user_id,
                        provisioned=external_user_id,
                        stored=stored,
                    )
                self._cache[internal_user_id] = stored
                return stored
        finally:
            # The last caller out drops the lock, whether provisioning worked or not.
            self._lock_users[internal_user_id] -= 1
            if self._lock_users[internal_user_id] <= 0:
                del self._lock_users[internal_user_id]
                self._locks.pop(internal_user_id, None)

    async def _provision(self, internal_user_id: str) -> str:
        email = await self.repository.get_email(internal_user_id)
        try:
            external_user_id = await self.client.provision_user(
                external_id=self.external_id_for(internal_user_id),
                email=email,
                metadata={"source": self.source, "app_user_id": internal_user_id},
            )
        except ExternalServiceError as e:
            IDENTITY_PROVISIONS.labels(outcome="error").inc()
            logger.error(
                "identity_provisioning_failed",
                user_id=internal_user_id,
                status_code=e.status_code,
                error=str(e),
            )
            raise IdentityProvisioningError(internal_user_id) from e
        IDENTITY_PROVISIONS.labels(outcome="created").inc()
        logger.info(
            "identity_provisioned",
            user_id=internal_user_id,
            external_user_id=external_user_id,
        )
        return external_user_id
