"""
Error taxonomy for the session core.
"""
from typing import Optional, Dict, Any


class PortalError(Exception):
    """Base class for all portal client errors."""


class ApiError(PortalError):
    """A request reached the server (or tried to) and did not succeed."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        title: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.title = title or "Error"
        self.payload = payload or {}

    def __str__(self):
        if self.status_code:
            return f"{self.title} ({self.status_code}): {self.message}"
        return f"{self.title}: {self.message}"


class AuthError(ApiError):
    """Login or refresh rejected: bad credentials, blocked account, revoked token."""


class NetworkError(ApiError):
    """Timeout or connectivity failure; no HTTP status was received."""


class RefreshThrottledError(PortalError):
    """The refresh guard declined to start a new token exchange."""


class StorageError(PortalError):
    """Local persistence read/write failure."""
