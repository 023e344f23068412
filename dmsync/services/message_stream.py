"""MessageStream: per-conversation live feed (initial page + pushed inserts)."""

from __future__ import annotations

import itertools
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

from dmsync.backend.base import ChatBackend, Subscription
from dmsync.config import get_settings
from dmsync.infra.logging_config import get_logger
from dmsync.schemas.message import Message

logger = get_logger("message_stream")

StreamCallback = Callable[[Tuple[Message, ...]], None]


class MessageStream:
    """
    Append-only log of a conversation's messages, keyed by id.

    open() subscribes first and then loads the most recent page, so inserts
    committed while the page is in flight are buffered instead of lost. Merging
    drops any message whose id is already present (e.g. the push echo of a
    message this client just sent). The sequence is never re-sorted.
    """

    def __init__(
        self,
        backend: ChatBackend,
        conversation_id: str,
        page_size: Optional[int] = None,
    ) -> None:
        self._backend = backend
        self.conversation_id = conversation_id
        self._page_size = (
            page_size if page_size is not None else get_settings().message_page_size
        )
        self._messages: List[Message] = []
        self._ids: Set[str] = set()
        self._pending: List[Message] = []
        self._subscription: Optional[Subscription] = None
        self._loaded = False
        self._closed = False
        self._listeners: Dict[int, StreamCallback] = {}
        self._listener_ids = itertools.count(1)

    # -- reading ------------------------------------------------------------

    @property
    def messages(self) -> Tuple[Message, ...]:
        return tuple(self._messages)

    @property
    def loaded(self) -> bool:
        return self._loaded

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return len(self._messages)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._ids

    def on_change(self, callback: StreamCallback) -> Callable[[], None]:
        listener_id = next(self._listener_ids)
        self._listeners[listener_id] = callback
        return lambda: self._listeners.pop(listener_id, None)

    def _changed(self) -> None:
        snapshot = self.messages
        for callback in list(self._listeners.values()):
            try:
                callback(snapshot)
            except Exception:
                logger.exception("Message stream listener failed")

    # -- lifecycle ----------------------------------------------------------

    async def open(self) -> "MessageStream":
        if self._closed:
            raise RuntimeError("MessageStream is closed")
        if self._subscription is not None:
            return self
        self._subscription = self._backend.subscribe_inserts(
            self.conversation_id, self._on_insert
        )
        try:
            page = await self._backend.list_messages(
                self.conversation_id, self._page_size
            )
        except Exception:
            self.close()
            raise
        if self._closed:
            logger.debug(
                "Ignoring page for %s, stream closed while loading", self.conversation_id
            )
            return self
        self._extend(page)
        self._extend(self._pending)
        self._pending.clear()
        self._loaded = True
        self._changed()
        return self

    def close(self) -> None:
        """Release the push subscription. Safe to call more than once."""
        self._closed = True
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        self._pending.clear()
        self._listeners.clear()

    async def __aenter__(self) -> "MessageStream":
        return await self.open()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()

    # -- merging ------------------------------------------------------------

    def _extend(self, messages: Sequence[Message]) -> int:
        added = 0
        for message in messages:
            if message.id in self._ids:
                continue
            self._messages.append(message)
            self._ids.add(message.id)
            added += 1
        return added

    def merge(self, message: Message) -> bool:
        """Append `message` unless its id is already present. Returns True if appended."""
        if message.conversation_id != self.conversation_id:
            logger.warning(
                "Dropping message %s for conversation %s on stream %s",
                message.id,
                message.conversation_id,
                self.conversation_id,
            )
            return False
        if not self._extend((message,)):
            return False
        self._changed()
        return True

    def _on_insert(self, message: Message) -> None:
        if self._closed:
            return
        try:
            if not self._loaded:
                self._pending.append(message)
                return
            self.merge(message)
        except Exception:
            logger.exception("Failed to merge pushed message %s", message.id)

    # -- optimistic entries -------------------------------------------------

    def append_placeholder(self, message: Message) -> None:
        if not message.is_placeholder:
            raise ValueError(f"{message.id!r} is not a placeholder id")
        self.merge(message)

    def replace(self, placeholder_id: str, message: Message) -> bool:
        """
        Swap a placeholder for the server record, keeping its position.

        If the server record already arrived through the push channel the
        placeholder is just removed.
        """
        if placeholder_id not in self._ids:
            return self.merge(message)
        if message.id in self._ids:
            return self.remove(placeholder_id)
        index = self._index_of(placeholder_id)
        self._messages[index] = message
        self._ids.discard(placeholder_id)
        self._ids.add(message.id)
        self._changed()
        return True

    def remove(self, placeholder_id: str) -> bool:
        if placeholder_id not in self._ids:
            return False
        del self._messages[self._index_of(placeholder_id)]
        self._ids.discard(placeholder_id)
        self._changed()
        return True

    def _index_of(self, message_id: str) -> int:
        # placeholders sit near the tail
        for index in range(len(self._messages) - 1, -1, -1):
            if self._messages[index].id == message_id:
                return index
        raise KeyError(message_id)
