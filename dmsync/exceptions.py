"""Error taxonomy shared by the backend contract and the client services."""

from __future__ import annotations


class ChatError(Exception):
    """Base class for every error raised across the backend boundary."""


class AuthError(ChatError):
    """Invalid credentials, expired or missing session."""


class NotFoundError(ChatError):
    """Requested profile or conversation does not exist."""


class ConflictError(ChatError):
    """A uniqueness constraint rejected the write (e.g. duplicate conversation pair)."""


class NetworkError(ChatError):
    """The backend timed out or could not be reached."""


class ValidationError(ChatError, ValueError):
    """Malformed input, such as empty message content."""
