"""
Error taxonomy shared by the FastAPI app and the serverless handler.
"""

from __future__ import annotations


class TrackerError(Exception):
    """Base error carrying the HTTP status and the message safe to return."""

    status_code: int = 500
    public_message: str = "Server error"

    def __init__(self, detail: str | None = None, *, public_message: str | None = None):
        super().__init__(detail or public_message or self.public_message)
        if public_message is not None:
            self.public_message = public_message


class AuthenticationError(TrackerError):
    status_code = 401
    public_message = "Invalid token"


class ConfigurationError(TrackerError):
    status_code = 500
    public_message = "Server configuration error"


class ValidationError(TrackerError):
    status_code = 400
    public_message = "Invalid snapshot payload"


class NotFound(TrackerError):
    status_code = 404
    public_message = "Not found"


class StorageUnavailable(TrackerError):
    """Backend could not be reached or read. Callers may retry."""

    status_code = 500
    public_message = "Server error"
