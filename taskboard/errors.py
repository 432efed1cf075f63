"""
Error taxonomy for the sync engine.

Every failure is local to one entity's cache slice; nothing here is fatal
to the process.
"""
from typing import Optional


class TaskboardError(Exception):
    """Base class for all sync engine errors."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status = status


class ConfigError(TaskboardError):
    """Raised when configuration is invalid or incomplete."""
    pass


class ValidationError(TaskboardError):
    """Input rejected before any network call (or by the server with 400/422)."""
    pass


class AuthorizationError(TaskboardError):
    """Action attempted without a sufficient role, or rejected with 401/403."""
    pass


class NetworkError(TaskboardError):
    """Request failed, timed out, or the server answered with an unexpected error."""
    pass


class NotFoundError(TaskboardError):
    """Entity vanished server-side (404) or is unknown to the local cache."""
    pass
