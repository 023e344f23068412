"""Tests for ConversationResolver."""

import asyncio
import uuid
from datetime import datetime, timezone

import pytest

from dmsync.backend.local import LocalBackend
from dmsync.exceptions import ConflictError, ValidationError
from dmsync.models.conversation import Conversation as ConversationRow
from dmsync.schemas.conversation import Conversation
from dmsync.services.conversation_resolver import ConversationResolver
from tests.fixtures.user_fixtures import DEFAULT_PASSWORD


def make_conversation(a, b):
    return Conversation(
        id=str(uuid.uuid4()),
        user1_id=a,
        user2_id=b,
        created_at=datetime.now(timezone.utc),
    )


@pytest.mark.asyncio
async def test_resolve_is_symmetric(alice, bob):
    from_alice = await ConversationResolver(alice.backend).resolve(
        alice.profile.id, bob.profile.id
    )
    from_bob = await ConversationResolver(bob.backend).resolve(
        bob.profile.id, alice.profile.id
    )
    assert from_alice == from_bob


@pytest.mark.asyncio
async def test_resolve_reuses_existing_conversation(alice, bob, db_manager):
    resolver = ConversationResolver(alice.backend)
    first = await resolver.resolve(alice.profile.id, bob.profile.id)
    second = await resolver.resolve(alice.profile.id, bob.profile.id)
    assert first == second
    with db_manager.db_session() as db:
        assert db.query(ConversationRow).count() == 1


@pytest.mark.asyncio
async def test_concurrent_resolution_from_both_sides_persists_one(
    server, alice, bob, db_manager
):
    # latency makes both lookups miss before either insert lands
    slow_alice = LocalBackend(server, latency=0.02)
    slow_bob = LocalBackend(server, latency=0.02)
    await slow_alice.sign_in_with_password(alice.email, DEFAULT_PASSWORD)
    await slow_bob.sign_in_with_password(bob.email, DEFAULT_PASSWORD)

    ids = await asyncio.gather(
        ConversationResolver(slow_alice).resolve(alice.profile.id, bob.profile.id),
        ConversationResolver(slow_bob).resolve(bob.profile.id, alice.profile.id),
        ConversationResolver(slow_alice).resolve(alice.profile.id, bob.profile.id),
    )

    assert len(set(ids)) == 1
    with db_manager.db_session() as db:
        assert db.query(ConversationRow).count() == 1


@pytest.mark.asyncio
async def test_conflict_is_recovered_by_requery(mock_backend):
    a, b = str(uuid.uuid4()), str(uuid.uuid4())
    winner = make_conversation(b, a)
    mock_backend.find_conversation.side_effect = [None, winner]
    mock_backend.create_conversation.side_effect = ConflictError("exists")

    conversation_id = await ConversationResolver(mock_backend).resolve(a, b)

    assert conversation_id == winner.id
    assert mock_backend.find_conversation.await_count == 2


@pytest.mark.asyncio
async def test_conflict_without_visible_row_propagates(mock_backend):
    a, b = str(uuid.uuid4()), str(uuid.uuid4())
    mock_backend.find_conversation.return_value = None
    mock_backend.create_conversation.side_effect = ConflictError("exists")

    with pytest.raises(ConflictError):
        await ConversationResolver(mock_backend).resolve(a, b)


@pytest.mark.asyncio
async def test_concurrent_calls_share_one_attempt(mock_backend):
    a, b = str(uuid.uuid4()), str(uuid.uuid4())
    gate = asyncio.Event()
    created = make_conversation(a, b)

    async def slow_find(x, y):
        await gate.wait()
        return None

    mock_backend.find_conversation.side_effect = slow_find
    mock_backend.create_conversation.return_value = created
    resolver = ConversationResolver(mock_backend)

    pending = [
        asyncio.create_task(resolver.resolve(a, b)),
        asyncio.create_task(resolver.resolve(b, a)),
    ]
    await asyncio.sleep(0)
    gate.set()
    results = await asyncio.gather(*pending)

    assert results == [created.id, created.id]
    assert mock_backend.find_conversation.await_count == 1
    assert mock_backend.create_conversation.await_count == 1


@pytest.mark.asyncio
async def test_create_uses_supplied_order(mock_backend):
    a, b = str(uuid.uuid4()), str(uuid.uuid4())
    mock_backend.find_conversation.return_value = None
    mock_backend.create_conversation.return_value = make_conversation(a, b)

    await ConversationResolver(mock_backend).resolve(a, b)

    mock_backend.create_conversation.assert_awaited_once_with(a, b)


@pytest.mark.asyncio
async def test_resolve_with_self_rejected(mock_backend):
    profile_id = str(uuid.uuid4())
    with pytest.raises(ValidationError):
        await ConversationResolver(mock_backend).resolve(profile_id, profile_id)
    mock_backend.find_conversation.assert_not_awaited()
