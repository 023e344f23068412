"""Storage services behind the reference backend: accounts, profiles, conversations, messages."""

from __future__ import annotations

import os
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional, Tuple

from cryptography.exceptions import InvalidKey
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt
from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session as DBSession

from dmsync.exceptions import AuthError, ConflictError, NotFoundError, ValidationError
from dmsync.models.conversation import Conversation, canonical_pair
from dmsync.models.message import Message
from dmsync.models.profile import Profile
from dmsync.models.user import User

SCRYPT_N = 2**14
SCRYPT_R = 8
SCRYPT_P = 1
SCRYPT_LENGTH = 32
SALT_BYTES = 16


def as_uuid(value: Any, field: str = "id") -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{field} is not a valid id: {value!r}") from e


def _scrypt(salt: bytes) -> Scrypt:
    return Scrypt(salt=salt, length=SCRYPT_LENGTH, n=SCRYPT_N, r=SCRYPT_R, p=SCRYPT_P)


def hash_password(password: str) -> str:
    salt = os.urandom(SALT_BYTES)
    key = _scrypt(salt).derive(password.encode("utf-8"))
    return f"scrypt${salt.hex()}${key.hex()}"


def verify_password(password: str, stored: str) -> bool:
    try:
        scheme, salt_hex, key_hex = stored.split("$", 2)
    except ValueError:
        return False
    if scheme != "scrypt":
        return False
    try:
        _scrypt(bytes.fromhex(salt_hex)).verify(
            password.encode("utf-8"), bytes.fromhex(key_hex)
        )
    except InvalidKey:
        return False
    return True


def default_username(user_id: uuid.UUID) -> str:
    return f"user_{str(user_id)[:8]}"


class AccountStore:
    def __init__(self, db: DBSession) -> None:
        self.db = db

    def get_user(self, user_id: uuid.UUID) -> Optional[User]:
        return self.db.query(User).filter(User.id == user_id).first()

    def get_user_by_email(self, email: str) -> Optional[User]:
        return self.db.query(User).filter(User.email == email).first()

    def create_account(
        self, email: str, password: str, metadata: Optional[dict[str, Any]] = None
    ) -> User:
        """
        Create the auth account and provision its profile in one transaction.

        username comes from metadata, falling back to user_<first 8 of id>.
        """
        email = (email or "").strip().lower()
        if not email or "@" not in email:
            raise AuthError("Unable to validate email address: invalid format")
        if not password:
            raise AuthError("Password should not be empty")
        metadata = dict(metadata or {})
        user = User(
            id=uuid.uuid4(),
            email=email,
            password_hash=hash_password(password),
            user_metadata=metadata,
        )
        username = (metadata.get("username") or "").strip() or default_username(user.id)
        user.profile = Profile(user_id=user.id, username=username, email=email)
        self.db.add(user)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            if self.get_user_by_email(email) is not None:
                raise AuthError("User already registered") from e
            raise AuthError("Database error saving new user") from e
        self.db.refresh(user)
        return user

    def authenticate(self, email: str, password: str) -> User:
        user = self.get_user_by_email((email or "").strip().lower())
        if user is None or not verify_password(password or "", user.password_hash):
            raise AuthError("Invalid login credentials")
        return user


class ProfileStore:
    def __init__(self, db: DBSession) -> None:
        self.db = db

    def get_by_user_id(self, user_id: uuid.UUID) -> Optional[Profile]:
        return self.db.query(Profile).filter(Profile.user_id == user_id).first()

    def get(self, profile_id: uuid.UUID) -> Optional[Profile]:
        return self.db.query(Profile).filter(Profile.id == profile_id).first()

    def list_excluding(self, profile_id: Optional[uuid.UUID]) -> List[Profile]:
        query = self.db.query(Profile)
        if profile_id is not None:
            query = query.filter(Profile.id != profile_id)
        return query.order_by(Profile.username.asc()).all()

    def delete(self, profile_id: uuid.UUID) -> bool:
        profile = self.get(profile_id)
        if profile is None:
            return False
        self.db.delete(profile)
        self.db.commit()
        return True


class ConversationStore:
    def __init__(self, db: DBSession) -> None:
        self.db = db

    def get(self, conversation_id: uuid.UUID) -> Optional[Conversation]:
        return (
            self.db.query(Conversation)
            .filter(Conversation.id == conversation_id)
            .first()
        )

    def find_pair(self, a: uuid.UUID, b: uuid.UUID) -> Optional[Conversation]:
        """Match either stored order, so rows written before canonicalization are found too."""
        return (
            self.db.query(Conversation)
            .filter(
                or_(
                    and_(Conversation.user1_id == a, Conversation.user2_id == b),
                    and_(Conversation.user1_id == b, Conversation.user2_id == a),
                )
            )
            .order_by(Conversation.created_at.asc())
            .first()
        )

    def create(self, a: uuid.UUID, b: uuid.UUID) -> Conversation:
        if a == b:
            raise ValidationError("a conversation needs two different profiles")
        profiles = ProfileStore(self.db)
        for profile_id in (a, b):
            if profiles.get(profile_id) is None:
                raise NotFoundError(f"Profile {profile_id} not found")
        now = datetime.now(timezone.utc)
        conversation = Conversation(user1_id=a, user2_id=b, created_at=now, updated_at=now)
        self.db.add(conversation)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            low, high = canonical_pair(a, b)
            raise ConflictError(
                f"Conversation between {low} and {high} already exists"
            ) from e
        self.db.refresh(conversation)
        return conversation

    def delete(self, conversation_id: uuid.UUID) -> bool:
        conversation = self.get(conversation_id)
        if conversation is None:
            return False
        self.db.delete(conversation)
        self.db.commit()
        return True


class MessageStore:
    """Insert and read messages. No update/delete of message content."""

    def __init__(self, db: DBSession) -> None:
        self.db = db

    def list_recent(self, conversation_id: uuid.UUID, limit: int = 100) -> List[Message]:
        rows = (
            self.db.query(Message)
            .filter(Message.conversation_id == conversation_id)
            .order_by(Message.created_at.desc())
            .limit(limit)
            .all()
        )
        rows.reverse()
        return rows

    def insert(
        self, conversation_id: uuid.UUID, sender_id: uuid.UUID, content: str
    ) -> Tuple[Message, Conversation]:
        if not content or not content.strip():
            raise ValidationError("message content must not be empty")
        conversation = ConversationStore(self.db).get(conversation_id)
        if conversation is None:
            raise NotFoundError(f"Conversation {conversation_id} not found")
        if sender_id not in (conversation.user1_id, conversation.user2_id):
            raise ValidationError("sender is not a participant of this conversation")

        # created_at is strictly increasing per conversation, so commit order
        # and created_at order agree.
        created_at = datetime.now(timezone.utc)
        last = conversation.updated_at
        if last is not None:
            if last.tzinfo is None:
                last = last.replace(tzinfo=timezone.utc)
            if created_at <= last:
                created_at = last + timedelta(microseconds=1)

        message = Message(
            conversation_id=conversation_id,
            sender_id=sender_id,
            content=content,
            created_at=created_at,
        )
        self.db.add(message)
        conversation.updated_at = created_at
        self.db.commit()
        self.db.refresh(message)
        return message, conversation

    def get_message_count(self, conversation_id: uuid.UUID) -> int:
        return (
            self.db.query(Message)
            .filter(Message.conversation_id == conversation_id)
            .count()
        )
