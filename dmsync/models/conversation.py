"""Conversation model: the unique channel between two profiles."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    UniqueConstraint,
    Uuid,
    event,
)
from sqlalchemy.orm import relationship

from dmsync.db import Base


class Conversation(Base):
    """
    One row per unordered pair of profiles.

    The pair is stored canonicalized (smaller id in user1_id) so the unique
    constraint covers both directions.
    """

    __tablename__ = "conversations"
    __table_args__ = (
        UniqueConstraint("user1_id", "user2_id", name="unique_conversation_pair"),
        CheckConstraint("user1_id != user2_id", name="different_users"),
        Index("idx_conversations_user2_user1", "user2_id", "user1_id"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user1_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
    )
    user2_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
    )
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    messages = relationship(
        "Message",
        back_populates="conversation",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Message.created_at",
    )


def canonical_pair(a: uuid.UUID, b: uuid.UUID) -> tuple[uuid.UUID, uuid.UUID]:
    """Order two profile ids the way conversations are stored."""
    return (a, b) if str(a) <= str(b) else (b, a)


@event.listens_for(Conversation, "before_insert")
def _normalize_conversation_users(mapper, connection, target: Conversation) -> None:
    target.user1_id, target.user2_id = canonical_pair(target.user1_id, target.user2_id)
