"""ConversationResolver: one conversation per unordered pair of profiles."""

from __future__ import annotations

import asyncio
from typing import Dict, FrozenSet

from dmsync.backend.base import ChatBackend
from dmsync.exceptions import ConflictError, ValidationError
from dmsync.infra.logging_config import get_logger

logger = get_logger("conversation_resolver")


class ConversationResolver:
    """
    Find-or-create for two-party conversations.

    Lookup matches either stored order; creation uses the order supplied. When
    another client wins the creation race the backend answers with a conflict,
    which is resolved by looking the pair up again. Concurrent resolve() calls
    for the same pair on one resolver share a single attempt.
    """

    def __init__(self, backend: ChatBackend) -> None:
        self._backend = backend
        self._inflight: Dict[FrozenSet[str], asyncio.Task] = {}

    async def resolve(self, initiator_id: str, other_id: str) -> str:
        if not initiator_id or not other_id:
            raise ValidationError("both profile ids are required")
        if initiator_id == other_id:
            raise ValidationError("cannot open a conversation with yourself")
        key = frozenset((initiator_id, other_id))
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.get_running_loop().create_task(
                self._find_or_create(initiator_id, other_id)
            )
            self._inflight[key] = task
            task.add_done_callback(lambda _: self._inflight.pop(key, None))
        # shield: one caller going away must not cancel the shared attempt
        return await asyncio.shield(task)

    async def _find_or_create(self, initiator_id: str, other_id: str) -> str:
        existing = await self._backend.find_conversation(initiator_id, other_id)
        if existing is not None:
            return existing.id
        try:
            created = await self._backend.create_conversation(initiator_id, other_id)
        except ConflictError:
            logger.info(
                "Conversation %s/%s created concurrently, re-resolving",
                initiator_id,
                other_id,
            )
            existing = await self._backend.find_conversation(initiator_id, other_id)
            if existing is None:
                raise
            return existing.id
        logger.info("Created conversation %s", created.id)
        return created.id
