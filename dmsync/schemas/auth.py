"""Pydantic schemas for identities, auth sessions and the published auth state."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from dmsync.schemas.common import Record
from dmsync.schemas.profile import Profile


class Identity(Record):
    """Authenticated principal issued by the auth subsystem."""

    id: str
    email: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)


class AuthSession(BaseModel):
    access_token: str
    refresh_token: str
    expires_at: datetime
    user: Identity

    model_config = {"frozen": True}


class AuthEvent(str, Enum):
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"


class AuthStatus(str, Enum):
    UNINITIALIZED = "uninitialized"
    BOOTSTRAPPING = "bootstrapping"
    READY = "ready"


class AuthState(BaseModel):
    """Snapshot published by SessionManager on every change."""

    status: AuthStatus = AuthStatus.UNINITIALIZED
    identity: Optional[Identity] = None
    profile: Optional[Profile] = None

    model_config = {"frozen": True}

    @property
    def loading(self) -> bool:
        return self.status != AuthStatus.READY

    @property
    def authenticated(self) -> bool:
        return self.identity is not None
