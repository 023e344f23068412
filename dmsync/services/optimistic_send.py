"""OptimisticSendController: instant local echo of outgoing messages with rollback."""

from __future__ import annotations

from typing import Optional

from dmsync.backend.base import ChatBackend
from dmsync.infra.logging_config import get_logger
from dmsync.schemas.message import Message
from dmsync.services.message_stream import MessageStream

logger = get_logger("optimistic_send")


class OptimisticSendController:
    """
    Owns the compose draft for one conversation.

    submit() shows a placeholder right away, then swaps it for the server
    record. Combined with the stream's id dedup, the later push echo of the
    same message is dropped. On failure the placeholder is removed and the
    draft restored exactly as typed, unless something new was typed meanwhile.
    """

    def __init__(
        self,
        backend: ChatBackend,
        stream: Optional[MessageStream],
        sender_id: Optional[str],
    ) -> None:
        self._backend = backend
        self.stream = stream
        self.sender_id = sender_id
        self.draft = ""
        self.sending = False
        self.last_error: Optional[Exception] = None

    def set_draft(self, text: str) -> None:
        self.draft = text

    @property
    def can_send(self) -> bool:
        return bool(
            self.draft.strip()
            and self.stream is not None
            and not self.stream.closed
            and self.sender_id
            and not self.sending
        )

    async def submit(self) -> Optional[Message]:
        """
        Send the current draft.

        Returns the confirmed message, or None when there was nothing to send
        (empty draft, no conversation or sender, or a send already running).
        Backend errors are re-raised after rollback.
        """
        if not self.can_send:
            return None
        stream = self.stream
        typed = self.draft
        content = typed.strip()
        placeholder = Message.placeholder(stream.conversation_id, self.sender_id, content)

        stream.append_placeholder(placeholder)
        self.draft = ""
        self.sending = True
        self.last_error = None
        try:
            confirmed = await self._backend.insert_message(
                stream.conversation_id, self.sender_id, content
            )
        except Exception as e:
            logger.warning(
                "Send failed in conversation %s: %s", stream.conversation_id, e
            )
            stream.remove(placeholder.id)
            if not self.draft:
                # keep anything typed while the send was in flight
                self.draft = typed
            self.last_error = e
            raise
        else:
            stream.replace(placeholder.id, confirmed)
            return confirmed
        finally:
            self.sending = False
