"""
Backend contract consumed by the client core.

Backends encapsulate auth, directory, conversation and message storage plus the
push channel, and expose normalized records to the services.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

from dmsync.schemas.auth import AuthEvent, AuthSession, Identity
from dmsync.schemas.conversation import Conversation
from dmsync.schemas.message import Message
from dmsync.schemas.profile import Profile

SessionChangeCallback = Callable[[AuthEvent, Optional[AuthSession]], None]
InsertCallback = Callable[[Message], None]


class Subscription:
    """Handle for a standing listener. unsubscribe() is idempotent."""

    def __init__(self, release: Callable[[], None]) -> None:
        self._release: Optional[Callable[[], None]] = release

    @property
    def active(self) -> bool:
        return self._release is not None

    def unsubscribe(self) -> None:
        release, self._release = self._release, None
        if release is not None:
            release()


class ChatBackend(ABC):
    """Contract for chat backends. One instance per running client."""

    # -- auth ---------------------------------------------------------------

    @abstractmethod
    async def get_current_session(self) -> Optional[AuthSession]:
        """Return the session this client holds, or None when signed out."""
        ...

    @abstractmethod
    def on_session_change(self, callback: SessionChangeCallback) -> Subscription:
        """Register a listener fired on sign-in, sign-out and token refresh."""
        ...

    @abstractmethod
    async def sign_up(
        self, email: str, password: str, metadata: Optional[dict[str, Any]] = None
    ) -> Identity:
        """Create an account and sign it in. Raise AuthError on rejection."""
        ...

    @abstractmethod
    async def sign_in_with_password(self, email: str, password: str) -> Identity:
        """Raise AuthError on invalid credentials."""
        ...

    @abstractmethod
    async def sign_out(self) -> None: ...

    @abstractmethod
    async def refresh_session(self) -> AuthSession:
        """Rotate tokens for the current session. Raise AuthError when there is none."""
        ...

    # -- directory ----------------------------------------------------------

    @abstractmethod
    async def fetch_profile(self, user_id: str) -> Profile:
        """Raise NotFoundError when the identity has no profile (yet)."""
        ...

    @abstractmethod
    async def list_profiles(self, exclude_profile_id: Optional[str]) -> list[Profile]:
        """All profiles except exclude_profile_id, ordered by username ascending."""
        ...

    # -- conversations ------------------------------------------------------

    @abstractmethod
    async def find_conversation(
        self, profile_a: str, profile_b: str
    ) -> Optional[Conversation]:
        """Match the unordered pair in either stored order."""
        ...

    @abstractmethod
    async def create_conversation(self, profile_a: str, profile_b: str) -> Conversation:
        """Raise ConflictError when the unordered pair already exists."""
        ...

    # -- messages -----------------------------------------------------------

    @abstractmethod
    async def list_messages(self, conversation_id: str, limit: int) -> list[Message]:
        """Most recent `limit` messages, returned in ascending created_at order."""
        ...

    @abstractmethod
    async def insert_message(
        self, conversation_id: str, sender_id: str, content: str
    ) -> Message:
        """Persist a message. Raise ValidationError on empty content."""
        ...

    @abstractmethod
    def subscribe_inserts(
        self, conversation_id: str, on_insert: InsertCallback
    ) -> Subscription:
        """Deliver messages committed to conversation_id until unsubscribed."""
        ...
