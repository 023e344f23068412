"""Message model: append-only, one row per message in a conversation."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text, Uuid, event
from sqlalchemy.orm import relationship

from dmsync.db import Base
from dmsync.exceptions import ValidationError


class Message(Base):
    """Messages are immutable once inserted; updates are rejected at flush time."""

    __tablename__ = "messages"
    __table_args__ = (
        Index("idx_messages_conv_created", "conversation_id", "created_at"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    conversation_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
    )
    sender_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    content = Column(Text, nullable=False)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    conversation = relationship("Conversation", back_populates="messages")


@event.listens_for(Message, "before_update")
def _reject_message_update(mapper, connection, target: Message) -> None:
    raise ValidationError("messages are immutable")
