"""Pydantic schema for directory profiles."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import Field, model_validator

from dmsync.schemas.common import Record, utcnow

DEFAULT_USERNAME = "User"


def username_from_email(email: Optional[str]) -> str:
    """Local part of the email, or the generic default when there is none."""
    local = (email or "").split("@", 1)[0].strip()
    return local or DEFAULT_USERNAME


class Profile(Record):
    """
    Directory row for a user, keyed by user_id in the client cache.

    A provisional profile is built from the identity alone while the directory
    lookup is in flight; it has no directory id and is never used as a
    conversation participant or message sender.
    """

    id: Optional[str] = None
    user_id: str
    username: str = ""
    email: str = ""
    created_at: datetime = Field(default_factory=utcnow)
    provisional: bool = False

    @model_validator(mode="after")
    def _default_username(self) -> "Profile":
        if not (self.username or "").strip():
            object.__setattr__(self, "username", username_from_email(self.email))
        return self

    @model_validator(mode="after")
    def _directory_id_required(self) -> "Profile":
        if self.id is None and not self.provisional:
            raise ValueError("only provisional profiles may omit the directory id")
        return self

    @classmethod
    def provisional_for(cls, user_id: str, email: str, username: Any = None) -> "Profile":
        return cls(
            id=None,
            user_id=user_id,
            username=username or "",
            email=email or "",
            provisional=True,
        )
