"""Storage layer: local relational mirror and connection management."""

from .connection import DatabaseManager
from .identities import IdentityRepository
from .message_links import MessageLinkRepository
from .models import (
    Base,
    ExternalIdentityModel,
    MessageMemoryModel,
    SubscriptionModel,
    UsageCounterModel,
    UsageEventModel,
    UserModel,
)
from .usage import UsageRepository

__all__ = [
    "DatabaseManager",
    "Base",
    "ExternalIdentityModel",
    "MessageMemoryModel",
    "SubscriptionModel",
    "UsageCounterModel",
    "UsageEventModel",
    "UserModel",
    "IdentityRepository",
    "MessageLinkRepository",
    "UsageRepository",
]
