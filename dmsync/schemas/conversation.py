"""Pydantic schema for conversations."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from dmsync.schemas.common import Record


class Conversation(Record):
    id: str
    user1_id: str
    user2_id: str
    created_at: datetime
    updated_at: Optional[datetime] = None

    def involves(self, profile_id: str) -> bool:
        return profile_id in (self.user1_id, self.user2_id)

    def other_participant(self, profile_id: str) -> str:
        return self.user2_id if self.user1_id == profile_id else self.user1_id
