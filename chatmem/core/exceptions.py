"""Custom exception hierarchy for the chat memory service."""


class ChatMemoryError(Exception):
    """Base exception for all chat memory errors."""

    pass


# --- Input / configuration errors ---


class ValidationError(ChatMemoryError):
    """Input validation failed."""

    pass


class ConfigurationError(ChatMemoryError):
    """Application configuration is invalid or missing required values."""

    pass


# --- External service errors ---


class ExternalServiceError(ChatMemoryError):
    """The external memory service was unreachable or returned an error."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        cause: Exception | None = None,
    ):
        self.status_code = status_code
        self.cause = cause
        super().__init__(message)


class IdentityProvisioningError(ChatMemoryError):
    """Creating the external identity for a user failed."""

    def __init__(self, user_id: str, message: str = "Failed to provision memory identity"):
        self.user_id = user_id
        super().__init__(f"{message} for user {user_id}")


# --- Storage errors ---


class PersistenceError(ChatMemoryError):
    """A read or write against the local relational store failed."""

    pass


# --- Usage errors ---


class PlanLookupError(ChatMemoryError):
    """No usable subscription plan could be determined for a user."""

    def __init__(self, user_id: str, plan: str | None = None):
        self.user_id = user_id
        self.plan = plan
        if plan:
            super().__init__(f"Unknown plan '{plan}' for user {user_id}")
        else:
            super().__init__(f"No subscription found for user {user_id}")


class QuotaExceededError(ChatMemoryError):
    """The user's plan limit for a metric has been reached."""

    def __init__(self, metric, limit: int, current: int, reason: str | None = None):
        self.metric = metric
        self.limit = limit
        self.current = current
        metric_name = getattr(metric, "value", metric)
        super().__init__(reason or f"Usage limit reached for {metric_name} ({current}/{limit})")


# --- Memory errors ---


class MemoryNotFoundError(ChatMemoryError):
    """Requested memory record does not exist."""

    def __init__(self, memory_id=None, message: str = "Memory not found"):
        self.memory_id = memory_id
        super().__init__(f"{message}: {memory_id}" if memory_id else message)
