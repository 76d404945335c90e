"""Chat memory service: external long-term memory, message links and usage quotas."""

__version__ = "0.1.0"
