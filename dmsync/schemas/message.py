"""Pydantic schema for messages and client-side placeholders."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import Field

from dmsync.schemas.common import Record, utcnow

# Server ids are UUID strings, which never start with this prefix.
PLACEHOLDER_PREFIX = "temp-"


def new_placeholder_id() -> str:
    return f"{PLACEHOLDER_PREFIX}{uuid.uuid4().hex}"


def is_placeholder_id(message_id: str) -> bool:
    return message_id.startswith(PLACEHOLDER_PREFIX)


class Message(Record):
    id: str
    conversation_id: str
    sender_id: str
    content: str
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def is_placeholder(self) -> bool:
        return is_placeholder_id(self.id)

    @classmethod
    def placeholder(cls, conversation_id: str, sender_id: str, content: str) -> "Message":
        """Client-synthesized record shown until the server confirms the write."""
        return cls(
            id=new_placeholder_id(),
            conversation_id=conversation_id,
            sender_id=sender_id,
            content=content,
            created_at=utcnow(),
        )
