"""
SessionManager: owns the auth session lifecycle and publishes auth readiness.

State machine: UNINITIALIZED -> BOOTSTRAPPING -> READY(identity | anonymous).
READY moves to READY(identity') on session replacement and back to
READY(anonymous) on sign-out. A timer forces BOOTSTRAPPING -> READY so callers
are never blocked by a slow or failed handshake.

Every identity replacement or sign-out bumps a generation counter. Async
profile resolutions capture the generation when they start and are dropped if
it moved before they complete.
"""

from __future__ import annotations

import asyncio
import itertools
from typing import Any, Callable, Coroutine, Dict, Optional, Set

from dmsync.backend.base import ChatBackend, Subscription
from dmsync.config import Settings, get_settings
from dmsync.exceptions import AuthError, ValidationError
from dmsync.infra.logging_config import get_logger
from dmsync.schemas.auth import AuthEvent, AuthSession, AuthState, AuthStatus, Identity
from dmsync.schemas.profile import Profile
from dmsync.services.profile_cache import ProfileCache

logger = get_logger("session_manager")

AuthStateCallback = Callable[[AuthState], None]


class SessionManager:
    def __init__(
        self,
        backend: ChatBackend,
        settings: Optional[Settings] = None,
        bootstrap_timeout: Optional[float] = None,
    ) -> None:
        self._backend = backend
        settings = settings or get_settings()
        self._bootstrap_timeout = (
            bootstrap_timeout
            if bootstrap_timeout is not None
            else settings.bootstrap_timeout
        )
        self.profiles = ProfileCache(backend)
        self._state = AuthState()
        self._generation = 0
        self._ready = asyncio.Event()
        self._subscribers: Dict[int, AuthStateCallback] = {}
        self._subscriber_ids = itertools.count(1)
        self._listener: Optional[Subscription] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._tasks: Set[asyncio.Task] = set()
        self._closed = False

    # -- published state ----------------------------------------------------

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def identity(self) -> Optional[Identity]:
        return self._state.identity

    @property
    def profile(self) -> Optional[Profile]:
        return self._state.profile

    @property
    def generation(self) -> int:
        return self._generation

    def subscribe(self, callback: AuthStateCallback) -> Callable[[], None]:
        """Call `callback` with every new AuthState. Returns the unsubscribe function."""
        subscriber_id = next(self._subscriber_ids)
        self._subscribers[subscriber_id] = callback

        def unsubscribe() -> None:
            self._subscribers.pop(subscriber_id, None)

        return unsubscribe

    def _publish(self, **changes: Any) -> None:
        self._state = self._state.model_copy(update=changes)
        if self._state.status == AuthStatus.READY:
            self._ready.set()
            self._cancel_timer()
        for callback in list(self._subscribers.values()):
            try:
                callback(self._state)
            except Exception:
                logger.exception("Auth state subscriber failed")

    def active_profile(self) -> Profile:
        """The signed-in user's directory profile; raises while it is unavailable."""
        profile = self._state.profile
        if self._state.identity is None or profile is None:
            raise AuthError("Not signed in")
        if profile.provisional:
            raise ValidationError("Profile is still being resolved")
        return profile

    # -- lifecycle ----------------------------------------------------------

    async def start(self) -> AuthState:
        """
        Bootstrap once and wait until the state is READY.

        Later calls (or concurrent ones) only wait for readiness. Returns no
        later than the bootstrap timeout.
        """
        if self._closed:
            raise RuntimeError("SessionManager is closed")
        if self._state.status == AuthStatus.UNINITIALIZED:
            self._publish(status=AuthStatus.BOOTSTRAPPING)
            self._ensure_listening()
            loop = asyncio.get_running_loop()
            self._timer = loop.call_later(
                self._bootstrap_timeout, self._on_bootstrap_timeout
            )
            self._spawn(self._bootstrap(self._generation))
        await self._ready.wait()
        return self._state

    def _ensure_listening(self) -> None:
        """Register the standing session-change listener if it is not yet registered."""
        if self._closed:
            raise RuntimeError("SessionManager is closed")
        if self._listener is None:
            self._listener = self._backend.on_session_change(self._on_session_change)

    async def wait_ready(self) -> AuthState:
        await self._ready.wait()
        return self._state

    async def close(self) -> None:
        """Unregister the session listener and cancel the timer and background work."""
        if self._closed:
            return
        self._closed = True
        if self._listener is not None:
            self._listener.unsubscribe()
            self._listener = None
        self._cancel_timer()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._subscribers.clear()

    async def __aenter__(self) -> "SessionManager":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_bootstrap_timeout(self) -> None:
        self._timer = None
        if self._state.status != AuthStatus.BOOTSTRAPPING:
            return
        logger.warning(
            "Auth bootstrap exceeded %.0f ms, continuing %s",
            self._bootstrap_timeout * 1000,
            "signed in" if self._state.identity else "signed out",
        )
        self._publish(status=AuthStatus.READY)

    async def _bootstrap(self, generation: int) -> None:
        try:
            session = await self._backend.get_current_session()
        except Exception as e:
            logger.error("Error initializing auth: %s", e)
            session = None
        if generation != self._generation:
            return
        if session is None:
            if self._state.status != AuthStatus.READY:
                self._publish(status=AuthStatus.READY)
            return
        self._adopt_identity(session.user)
        try:
            await self._resolve_profile(session.user, self._generation)
        except Exception as e:
            logger.warning("Profile lookup during bootstrap failed: %s", e)
        if self._state.status != AuthStatus.READY:
            self._publish(status=AuthStatus.READY)

    # -- identity / profile resolution --------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background auth task failed", exc_info=exc)

    def _adopt_identity(self, identity: Identity) -> bool:
        """Publish `identity` with a provisional profile. Returns False if already current."""
        current = self._state.identity
        if current is not None and current.id == identity.id:
            if current != identity:
                self._publish(identity=identity)
            return False
        if current is not None:
            self.profiles.clear()
        self._generation += 1
        profile = self.profiles.peek(identity.id) or Profile.provisional_for(
            identity.id, identity.email
        )
        self._publish(identity=identity, profile=profile)
        return True

    async def _resolve_profile(self, identity: Identity, generation: int) -> None:
        profile = await self.profiles.get(identity.id)
        if generation != self._generation:
            logger.debug("Dropping stale profile resolution for %s", identity.id)
            return
        if profile is None:
            return
        self._publish(profile=profile, status=AuthStatus.READY)

    async def _resolve_in_background(
        self, identity: Identity, generation: int, drop_session_on_error: bool
    ) -> None:
        try:
            await self._resolve_profile(identity, generation)
        except Exception as e:
            if generation != self._generation:
                return
            if drop_session_on_error:
                logger.warning("Session refresh failed, continuing signed out: %s", e)
                self._clear_identity()
            else:
                logger.warning("Background profile fetch failed: %s", e)

    def _clear_identity(self) -> None:
        self._generation += 1
        self.profiles.clear()
        self._publish(status=AuthStatus.READY, identity=None, profile=None)

    def _on_session_change(
        self, event: AuthEvent, session: Optional[AuthSession]
    ) -> None:
        if self._closed:
            return
        try:
            if session is None:
                if self._state.identity is not None:
                    logger.info("Session ended (%s)", event.value)
                    self._clear_identity()
                return
            # an echo of the current identity (our own sign-in, a token
            # refresh) must not sign the user out if the profile fetch fails
            adopted = self._adopt_identity(session.user)
            self._spawn(
                self._resolve_in_background(
                    session.user, self._generation, drop_session_on_error=adopted
                )
            )
        except Exception:
            logger.exception("Session change handling failed on %s", event.value)
            self._clear_identity()

    # -- auth operations ----------------------------------------------------

    async def sign_in(self, email: str, password: str) -> AuthState:
        """
        Sign in and return without waiting for the directory.

        The identity and a provisional profile (username from the email local
        part) are published immediately; the real profile replaces it when the
        background fetch lands. Backend errors propagate unchanged.
        """
        self._ensure_listening()
        identity = await self._backend.sign_in_with_password(email, password)
        self._adopt_identity(identity)
        self._publish(status=AuthStatus.READY)
        self._spawn(
            self._resolve_in_background(
                identity, self._generation, drop_session_on_error=False
            )
        )
        return self._state

    async def sign_up(self, email: str, password: str, username: str) -> AuthState:
        """Create the account (the backend provisions the profile) and resolve it."""
        self._ensure_listening()
        identity = await self._backend.sign_up(
            email, password, metadata={"username": username}
        )
        self._adopt_identity(identity)
        try:
            await self._resolve_profile(identity, self._generation)
        except Exception as e:
            logger.warning("Profile lookup after sign-up failed: %s", e)
        if self._state.status != AuthStatus.READY:
            self._publish(status=AuthStatus.READY)
        return self._state

    async def sign_out(self) -> AuthState:
        self._ensure_listening()
        await self._backend.sign_out()
        self._clear_identity()
        return self._state

    async def refresh(self) -> AuthSession:
        """Rotate tokens; the session-change listener republishes the result."""
        self._ensure_listening()
        return await self._backend.refresh_session()
