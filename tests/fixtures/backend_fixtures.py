"""Backend doubles for timing and failure scenarios."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from dmsync.backend.base import ChatBackend, Subscription


class HangingHandshake:
    """Session handshake that never answers, with listener bookkeeping."""

    def __init__(self) -> None:
        self.calls = 0
        self.listeners = []
        self.released = 0

    async def get_current_session(self):
        self.calls += 1
        await asyncio.Event().wait()

    def on_session_change(self, callback) -> Subscription:
        self.listeners.append(callback)

        def release() -> None:
            self.released += 1
            self.listeners.remove(callback)

        return Subscription(release)


@pytest.fixture(scope="function")
def mock_backend():
    """Spec'd backend with async methods, for unit tests that script responses."""
    backend = MagicMock(spec=ChatBackend)
    for name in (
        "get_current_session",
        "sign_up",
        "sign_in_with_password",
        "sign_out",
        "refresh_session",
        "fetch_profile",
        "list_profiles",
        "find_conversation",
        "create_conversation",
        "list_messages",
        "insert_message",
    ):
        setattr(backend, name, AsyncMock(name=name))
    backend.on_session_change.return_value = Subscription(lambda: None)
    backend.subscribe_inserts.return_value = Subscription(lambda: None)
    return backend


@pytest.fixture(scope="function")
def hanging_backend(mock_backend):
    handshake = HangingHandshake()
    mock_backend.get_current_session = AsyncMock(
        side_effect=handshake.get_current_session
    )
    mock_backend.on_session_change = MagicMock(side_effect=handshake.on_session_change)
    mock_backend.handshake = handshake
    return mock_backend
