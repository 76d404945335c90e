"""Memory subsystem: external store client, identity, message links, orchestration."""

from .client import DeleteResult, MemoryServiceClient
from .identity import IdentityResolver
from .linker import MessageMemoryLinker
from .orchestrator import MemoryOrchestrator
from .results import FullySucceeded, PartiallySucceeded, SaveResult, UpdateResult

__all__ = [
    "DeleteResult",
    "FullySucceeded",
    "IdentityResolver",
    "MemoryOrchestrator",
    "MemoryServiceClient",
    "MessageMemoryLinker",
    "PartiallySucceeded",
    "SaveResult",
    "UpdateResult",
]
