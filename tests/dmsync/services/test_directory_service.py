"""Tests for DirectoryService and filter_profiles."""

import asyncio
import uuid

import pytest

from dmsync.schemas.profile import Profile
from dmsync.services.directory_service import DirectoryService, filter_profiles
from dmsync.services.session_manager import SessionManager


def make_profile(username, email):
    return Profile(
        id=str(uuid.uuid4()),
        user_id=str(uuid.uuid4()),
        username=username,
        email=email,
    )


@pytest.fixture
def people():
    return [
        make_profile("Alice", "alice@example.com"),
        make_profile("bob", "robert@work.org"),
        make_profile("carol", "carol@example.com"),
    ]


def test_filter_matches_username_or_email_case_insensitively(people):
    assert [p.username for p in filter_profiles(people, "ALI")] == ["Alice"]
    assert [p.username for p in filter_profiles(people, "work")] == ["bob"]
    assert [p.username for p in filter_profiles(people, "example")] == [
        "Alice",
        "carol",
    ]


def test_filter_blank_query_keeps_everything(people):
    assert filter_profiles(people, "") == people
    assert filter_profiles(people, "   ") == people


def test_filter_does_not_mutate_input(people):
    before = list(people)
    filter_profiles(people, "zzz")
    assert people == before


@pytest.mark.asyncio
async def test_load_excludes_self_and_caches(alice, bob, carol):
    directory = DirectoryService(alice.backend, debounce_seconds=0.01)

    profiles = await directory.load(alice.profile.id)
    assert {p.id for p in profiles} == {bob.profile.id, carol.profile.id}
    assert directory.visible == profiles

    await alice.backend.sign_out()
    # served from cache, no backend call
    assert await directory.load(alice.profile.id) == profiles
    directory.close()


@pytest.mark.asyncio
async def test_load_force_refetches(mock_backend, people):
    mock_backend.list_profiles.return_value = people
    directory = DirectoryService(mock_backend, debounce_seconds=0.01)
    own_id = str(uuid.uuid4())

    await directory.load(own_id)
    await directory.load(own_id)
    await directory.load(own_id, force=True)

    assert mock_backend.list_profiles.await_count == 2
    mock_backend.list_profiles.assert_awaited_with(own_id)
    directory.close()


@pytest.mark.asyncio
async def test_search_fires_once_on_trailing_edge(mock_backend, people):
    mock_backend.list_profiles.return_value = people
    directory = DirectoryService(mock_backend, debounce_seconds=0.03)
    await directory.load(str(uuid.uuid4()))
    updates = []
    directory.on_change(lambda visible: updates.append([p.username for p in visible]))

    for query in ("c", "ca", "car"):
        directory.search(query)
        await asyncio.sleep(0.005)
    assert updates == []
    assert directory.query == ""

    await asyncio.sleep(0.06)
    assert updates == [["carol"]]
    assert directory.query == "car"
    directory.close()


@pytest.mark.asyncio
async def test_load_reapplies_current_query(mock_backend, people):
    mock_backend.list_profiles.return_value = people
    directory = DirectoryService(mock_backend, debounce_seconds=0.01)
    await directory.load(str(uuid.uuid4()))
    directory.search("bob")
    await asyncio.sleep(0.03)

    mock_backend.list_profiles.return_value = people + [
        make_profile("bobby", "bobby@example.com")
    ]
    await directory.load(str(uuid.uuid4()))

    assert [p.username for p in directory.visible] == ["bob", "bobby"]
    directory.close()


@pytest.mark.asyncio
async def test_close_cancels_pending_search(mock_backend, people):
    mock_backend.list_profiles.return_value = people
    directory = DirectoryService(mock_backend, debounce_seconds=0.02)
    await directory.load(str(uuid.uuid4()))
    updates = []
    directory.on_change(updates.append)

    directory.search("alice")
    directory.close()
    await asyncio.sleep(0.05)

    assert updates == []
    with pytest.raises(RuntimeError):
        directory.search("again")


@pytest.mark.asyncio
async def test_reset_forgets_cached_profiles(mock_backend, people):
    mock_backend.list_profiles.return_value = people
    directory = DirectoryService(mock_backend, debounce_seconds=0.01)
    own_id = str(uuid.uuid4())
    await directory.load(own_id)

    directory.reset()
    assert directory.profiles == []
    assert directory.visible == []

    await directory.load(own_id)
    assert mock_backend.list_profiles.await_count == 2
    directory.close()


@pytest.mark.asyncio
async def test_sign_out_resets_bound_directory(alice, bob, settings):
    async with SessionManager(alice.backend, settings) as session:
        directory = DirectoryService(alice.backend, debounce_seconds=0.02, session=session)
        await directory.load(alice.profile.id)
        updates = []
        directory.on_change(updates.append)
        directory.search("bob")

        await session.sign_out()
        await asyncio.sleep(0.04)

        assert directory.profiles == []
        assert directory.visible == []
        assert updates == [[]]
        directory.close()


@pytest.mark.asyncio
async def test_same_identity_updates_keep_directory(alice, bob, settings):
    async with SessionManager(alice.backend, settings) as session:
        directory = DirectoryService(alice.backend, debounce_seconds=0.01, session=session)
        profiles = await directory.load(alice.profile.id)

        await session.refresh()
        await asyncio.sleep(0.02)

        assert directory.profiles == profiles
        directory.close()
