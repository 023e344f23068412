"""
In-process reference backend.

LocalServer owns the database, the issued tokens and the push hub. Each
LocalBackend is one client instance talking to it: it holds that client's auth
session and session-change listeners, like a hosted backend SDK would.
"""

from __future__ import annotations

import asyncio
import itertools
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, TypeVar
import uuid

from dmsync.backend.base import (
    ChatBackend,
    InsertCallback,
    SessionChangeCallback,
    Subscription,
)
from dmsync.backend.store import (
    AccountStore,
    ConversationStore,
    MessageStore,
    ProfileStore,
    as_uuid,
)
from dmsync.config import Settings, get_settings
from dmsync.db import DatabaseManager
from dmsync.exceptions import AuthError, NetworkError, NotFoundError
from dmsync.infra.logging_config import get_logger
from dmsync.models.user import User
from dmsync.schemas.auth import AuthEvent, AuthSession, Identity
from dmsync.schemas.conversation import Conversation
from dmsync.schemas.message import Message
from dmsync.schemas.profile import Profile

logger = get_logger("backend.local")

T = TypeVar("T")


class PushHub:
    """Fan-out of committed message rows to per-conversation listeners."""

    def __init__(self) -> None:
        self._listeners: Dict[str, Dict[int, InsertCallback]] = {}
        self._ids = itertools.count(1)

    def subscribe(self, conversation_id: str, callback: InsertCallback) -> Subscription:
        listener_id = next(self._ids)
        self._listeners.setdefault(conversation_id, {})[listener_id] = callback

        def release() -> None:
            listeners = self._listeners.get(conversation_id)
            if listeners is None:
                return
            listeners.pop(listener_id, None)
            if not listeners:
                self._listeners.pop(conversation_id, None)

        return Subscription(release)

    def listener_count(self, conversation_id: str) -> int:
        return len(self._listeners.get(conversation_id, {}))

    def publish(self, message: Message) -> None:
        """Schedule delivery on the running loop, after the current call returns."""
        loop = asyncio.get_running_loop()
        loop.call_soon(self._deliver, message)

    def _deliver(self, message: Message) -> None:
        listeners = list(self._listeners.get(message.conversation_id, {}).values())
        for callback in listeners:
            try:
                callback(message)
            except Exception:
                logger.exception(
                    "Insert listener failed for conversation %s", message.conversation_id
                )


@dataclass
class _IssuedToken:
    user_id: uuid.UUID
    refresh_token: str
    expires_at: datetime


class LocalServer:
    """Shared state for every LocalBackend client: storage, tokens, push hub."""

    def __init__(
        self,
        db_manager: Optional[DatabaseManager] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.db_manager = db_manager or DatabaseManager(self.settings.database_url)
        self.db_manager.create_all()
        self.push = PushHub()
        self._access_tokens: Dict[str, _IssuedToken] = {}
        self._refresh_tokens: Dict[str, str] = {}

    # -- tokens -------------------------------------------------------------

    def issue_session(self, user: User) -> AuthSession:
        access_token = secrets.token_urlsafe(32)
        refresh_token = secrets.token_urlsafe(32)
        expires_at = datetime.now(timezone.utc) + timedelta(
            seconds=self.settings.session_ttl_seconds
        )
        self._access_tokens[access_token] = _IssuedToken(
            user_id=user.id, refresh_token=refresh_token, expires_at=expires_at
        )
        self._refresh_tokens[refresh_token] = access_token
        return AuthSession(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
            user=identity_from_user(user),
        )

    def validate(self, access_token: str) -> uuid.UUID:
        issued = self._access_tokens.get(access_token)
        if issued is None:
            raise AuthError("Invalid JWT")
        if issued.expires_at <= datetime.now(timezone.utc):
            raise AuthError("JWT expired")
        return issued.user_id

    def refresh(self, refresh_token: str) -> AuthSession:
        access_token = self._refresh_tokens.pop(refresh_token, None)
        if access_token is None:
            raise AuthError("Invalid Refresh Token")
        issued = self._access_tokens.pop(access_token, None)
        if issued is None:
            raise AuthError("Invalid Refresh Token")
        with self.db_manager.db_session() as db:
            user = AccountStore(db).get_user(issued.user_id)
            if user is None:
                raise AuthError("User not found")
            return self.issue_session(user)

    def revoke(self, access_token: str) -> None:
        issued = self._access_tokens.pop(access_token, None)
        if issued is not None:
            self._refresh_tokens.pop(issued.refresh_token, None)


def identity_from_user(user: User) -> Identity:
    return Identity(id=str(user.id), email=user.email, metadata=user.user_metadata or {})


class LocalBackend(ChatBackend):
    """One client's view of a LocalServer."""

    def __init__(
        self,
        server: LocalServer,
        latency: Optional[float] = None,
        request_timeout: Optional[float] = None,
    ) -> None:
        self.server = server
        settings = server.settings
        self._latency = (
            latency if latency is not None else settings.backend_latency_ms / 1000.0
        )
        self._timeout = request_timeout or settings.request_timeout_seconds
        self._session: Optional[AuthSession] = None
        self._listeners: Dict[int, SessionChangeCallback] = {}
        self._listener_ids = itertools.count(1)

    async def _request(self, operation: str, func: Callable[[], T]) -> T:
        async def run() -> T:
            if self._latency > 0:
                await asyncio.sleep(self._latency)
            return func()

        try:
            return await asyncio.wait_for(run(), timeout=self._timeout)
        except asyncio.TimeoutError as e:
            raise NetworkError(f"{operation} timed out after {self._timeout}s") from e

    def _require_user_id(self) -> uuid.UUID:
        if self._session is None:
            raise AuthError("Auth session missing")
        return self.server.validate(self._session.access_token)

    def _emit(self, event: AuthEvent, session: Optional[AuthSession]) -> None:
        loop = asyncio.get_running_loop()
        for callback in list(self._listeners.values()):
            loop.call_soon(self._notify, callback, event, session)

    @staticmethod
    def _notify(
        callback: SessionChangeCallback, event: AuthEvent, session: Optional[AuthSession]
    ) -> None:
        try:
            callback(event, session)
        except Exception:
            logger.exception("Session change listener failed on %s", event.value)

    def _adopt(self, event: AuthEvent, session: Optional[AuthSession]) -> None:
        previous = self._session
        if event == AuthEvent.SIGNED_IN and previous is not None:
            # one authoritative session per client
            self.server.revoke(previous.access_token)
        self._session = session
        self._emit(event, session)

    # -- auth ---------------------------------------------------------------

    async def get_current_session(self) -> Optional[AuthSession]:
        def lookup() -> Optional[AuthSession]:
            session = self._session
            if session is None:
                return None
            if session.expires_at > datetime.now(timezone.utc):
                return session
            try:
                refreshed = self.server.refresh(session.refresh_token)
            except AuthError:
                logger.info("Stored session expired and could not be refreshed")
                self._adopt(AuthEvent.SIGNED_OUT, None)
                return None
            self._adopt(AuthEvent.TOKEN_REFRESHED, refreshed)
            return refreshed

        return await self._request("get_current_session", lookup)

    def on_session_change(self, callback: SessionChangeCallback) -> Subscription:
        listener_id = next(self._listener_ids)
        self._listeners[listener_id] = callback
        return Subscription(lambda: self._listeners.pop(listener_id, None))

    async def sign_up(
        self, email: str, password: str, metadata: Optional[dict[str, Any]] = None
    ) -> Identity:
        def create() -> AuthSession:
            with self.server.db_manager.db_session() as db:
                user = AccountStore(db).create_account(email, password, metadata)
                return self.server.issue_session(user)

        session = await self._request("sign_up", create)
        self._adopt(AuthEvent.SIGNED_IN, session)
        logger.info("Signed up %s", session.user.id)
        return session.user

    async def sign_in_with_password(self, email: str, password: str) -> Identity:
        def authenticate() -> AuthSession:
            with self.server.db_manager.db_session() as db:
                user = AccountStore(db).authenticate(email, password)
                return self.server.issue_session(user)

        session = await self._request("sign_in_with_password", authenticate)
        self._adopt(AuthEvent.SIGNED_IN, session)
        return session.user

    async def sign_out(self) -> None:
        def revoke() -> None:
            if self._session is not None:
                self.server.revoke(self._session.access_token)

        await self._request("sign_out", revoke)
        self._adopt(AuthEvent.SIGNED_OUT, None)

    async def refresh_session(self) -> AuthSession:
        def refresh() -> AuthSession:
            if self._session is None:
                raise AuthError("Auth session missing")
            return self.server.refresh(self._session.refresh_token)

        session = await self._request("refresh_session", refresh)
        self._adopt(AuthEvent.TOKEN_REFRESHED, session)
        return session

    # -- directory ----------------------------------------------------------

    async def fetch_profile(self, user_id: str) -> Profile:
        def fetch() -> Profile:
            self._require_user_id()
            with self.server.db_manager.db_session() as db:
                row = ProfileStore(db).get_by_user_id(as_uuid(user_id, "user_id"))
                if row is None:
                    raise NotFoundError(f"No profile for user {user_id}")
                return Profile.model_validate(row)

        return await self._request("fetch_profile", fetch)

    async def list_profiles(self, exclude_profile_id: Optional[str]) -> list[Profile]:
        def fetch() -> list[Profile]:
            self._require_user_id()
            exclude = (
                as_uuid(exclude_profile_id, "exclude_profile_id")
                if exclude_profile_id
                else None
            )
            with self.server.db_manager.db_session() as db:
                rows = ProfileStore(db).list_excluding(exclude)
                return [Profile.model_validate(row) for row in rows]

        return await self._request("list_profiles", fetch)

    # -- conversations ------------------------------------------------------

    async def find_conversation(
        self, profile_a: str, profile_b: str
    ) -> Optional[Conversation]:
        def find() -> Optional[Conversation]:
            self._require_user_id()
            with self.server.db_manager.db_session() as db:
                row = ConversationStore(db).find_pair(
                    as_uuid(profile_a, "profile_a"), as_uuid(profile_b, "profile_b")
                )
                return Conversation.model_validate(row) if row is not None else None

        return await self._request("find_conversation", find)

    async def create_conversation(self, profile_a: str, profile_b: str) -> Conversation:
        def create() -> Conversation:
            self._require_user_id()
            with self.server.db_manager.db_session() as db:
                row = ConversationStore(db).create(
                    as_uuid(profile_a, "profile_a"), as_uuid(profile_b, "profile_b")
                )
                return Conversation.model_validate(row)

        return await self._request("create_conversation", create)

    # -- messages -----------------------------------------------------------

    async def list_messages(self, conversation_id: str, limit: int) -> list[Message]:
        def fetch() -> list[Message]:
            self._require_user_id()
            with self.server.db_manager.db_session() as db:
                rows = MessageStore(db).list_recent(
                    as_uuid(conversation_id, "conversation_id"), limit=limit
                )
                return [Message.model_validate(row) for row in rows]

        return await self._request("list_messages", fetch)

    async def insert_message(
        self, conversation_id: str, sender_id: str, content: str
    ) -> Message:
        def insert() -> Message:
            self._require_user_id()
            with self.server.db_manager.db_session() as db:
                row, _ = MessageStore(db).insert(
                    as_uuid(conversation_id, "conversation_id"),
                    as_uuid(sender_id, "sender_id"),
                    content,
                )
                return Message.model_validate(row)

        message = await self._request("insert_message", insert)
        self.server.push.publish(message)
        return message

    def subscribe_inserts(
        self, conversation_id: str, on_insert: InsertCallback
    ) -> Subscription:
        return self.server.push.subscribe(conversation_id, on_insert)
