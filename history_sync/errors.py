"""Error taxonomy for the listening history sync."""

from typing import Dict, Optional


class SyncError(Exception):
    """Base exception carrying diagnostic context (path, operation, status)."""

    def __init__(self, message: str, context: Optional[Dict] = None):
        super().__init__(message)
        self.context = context or {}

    def __str__(self) -> str:
        message = super().__str__()
        if not self.context:
            return message
        details = ", ".join(f"{key}={value}" for key, value in self.context.items())
        return f"{message} ({details})"


class AuthError(SyncError):
    """Raised when credentials are invalid or expired. Never retried."""
    pass


class FetchError(SyncError):
    """Raised on network, backend or rate-limit failures."""
    pass


class ParseError(SyncError):
    """Raised when a play timestamp or stored metadata cannot be parsed."""
    pass


class ConflictError(SyncError):
    """Raised when a conditional write is rejected because the version is stale."""
    pass


class NotFoundError(SyncError):
    """Raised when a document does not exist yet."""
    pass


class InvalidPathError(SyncError):
    """Raised when a document path resolves outside the store's root."""
    pass
