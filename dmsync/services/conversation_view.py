"""ConversationView: one open chat, tying resolver, stream and send controller together."""

from __future__ import annotations

from typing import Optional

from dmsync.backend.base import ChatBackend
from dmsync.config import Settings, get_settings
from dmsync.exceptions import ValidationError
from dmsync.infra.logging_config import get_logger
from dmsync.schemas.auth import AuthState
from dmsync.schemas.profile import Profile
from dmsync.services.conversation_resolver import ConversationResolver
from dmsync.services.message_stream import MessageStream
from dmsync.services.optimistic_send import OptimisticSendController
from dmsync.services.session_manager import SessionManager

logger = get_logger("conversation_view")


class ConversationView:
    """
    Holds at most one open conversation.

    open() resolves the conversation once per call and swaps in a fresh
    stream; the previous stream is released first. If open() or close() is
    called again while a resolution is in flight, the older result is dropped.
    The view follows the session: sign-out or a switch to another identity
    closes whatever is open.
    """

    def __init__(
        self,
        backend: ChatBackend,
        session: SessionManager,
        resolver: Optional[ConversationResolver] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._backend = backend
        self._session = session
        self._resolver = resolver or ConversationResolver(backend)
        self._settings = settings or get_settings()
        self._generation = 0
        self._owner_id: Optional[str] = None
        self.other: Optional[Profile] = None
        self.conversation_id: Optional[str] = None
        self.stream: Optional[MessageStream] = None
        self.composer: Optional[OptimisticSendController] = None
        self._unsubscribe_session = session.subscribe(self._on_auth_state)

    @property
    def is_open(self) -> bool:
        return self.stream is not None and not self.stream.closed

    async def open(self, other: Profile) -> Optional[str]:
        """
        Open the conversation with `other`.

        Returns the conversation id, or None if this open was superseded
        before it finished.
        """
        me = self._session.active_profile()
        if other.id is None:
            raise ValidationError("target profile has no directory id")
        self._release()
        self._generation += 1
        generation = self._generation
        self._owner_id = me.user_id
        self.other = other

        conversation_id = await self._resolver.resolve(me.id, other.id)
        if generation != self._generation:
            logger.debug("Dropping superseded open of conversation %s", conversation_id)
            return None

        stream = MessageStream(
            self._backend, conversation_id, self._settings.message_page_size
        )
        self.conversation_id = conversation_id
        self.stream = stream
        self.composer = OptimisticSendController(self._backend, stream, me.id)
        try:
            await stream.open()
        except Exception:
            if generation == self._generation:
                self._release()
            raise
        if generation != self._generation:
            stream.close()
            return None
        return conversation_id

    def _on_auth_state(self, state: AuthState) -> None:
        if self._owner_id is None:
            return
        if state.identity is not None and state.identity.id == self._owner_id:
            return
        logger.info("Session changed, closing conversation %s", self.conversation_id)
        self.close()

    def _release(self) -> None:
        if self.stream is not None:
            self.stream.close()
        self.stream = None
        self.composer = None
        self.conversation_id = None
        self.other = None
        self._owner_id = None

    def close(self) -> None:
        self._generation += 1
        self._release()

    def dispose(self) -> None:
        """Close and stop following the session."""
        self.close()
        self._unsubscribe_session()

    async def __aenter__(self) -> "ConversationView":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.dispose()
