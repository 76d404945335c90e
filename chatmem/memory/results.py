"""Result types for memory operations."""

from dataclasses import dataclass, field
from typing import Any

from .client import DeleteResult


@dataclass(frozen=True)
class FullySucceeded:
    """External write and all local bookkeeping completed."""

    memory_id: str
    fully_succeeded: bool = field(default=True, init=False)

    def to_api(self) -> dict[str, Any]:
        return {"success": True, "memoryId": self.memory_id, "fullySucceeded": True}


@dataclass(frozen=True)
class PartiallySucceeded:
    """External write committed; linking or usage tracking failed and was logged."""

    memory_id: str
    secondary_errors: tuple[str, ...] = ()
    fully_succeeded: bool = field(default=False, init=False)

    def to_api(self) -> dict[str, Any]:
        return {"success": True, "memoryId": self.memory_id, "fullySucceeded": False}


SaveResult = FullySucceeded | PartiallySucceeded


@dataclass(frozen=True)
class UpdateResult:
    memory_id: str
    success: bool
    updated_fields: tuple[str, ...] = ()

    def to_api(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "memoryId": self.memory_id,
            "updatedFields": list(self.updated_fields),
        }


@dataclass
class SyncReport:
    """Outcome of reconciling many users."""

    users_synced: int = 0
    failures: dict[str, str] = field(default_factory=dict)


__all__ = [
    "DeleteResult",
    "FullySucceeded",
    "PartiallySucceeded",
    "SaveResult",
    "SyncReport",
    "UpdateResult",
]
