"""DirectoryService: other users' profiles plus debounced local search."""

from __future__ import annotations

import itertools
from typing import Callable, Dict, List, Optional, Sequence

from dmsync.backend.base import ChatBackend
from dmsync.config import get_settings
from dmsync.infra.logging_config import get_logger
from dmsync.schemas.auth import AuthState
from dmsync.schemas.profile import Profile
from dmsync.services.session_manager import SessionManager
from dmsync.utils.debounce import Debouncer

logger = get_logger("directory")

DirectoryCallback = Callable[[List[Profile]], None]


def filter_profiles(profiles: Sequence[Profile], query: str) -> List[Profile]:
    """Case-insensitive substring match on username or email. Blank query keeps all."""
    needle = (query or "").strip().lower()
    if not needle:
        return list(profiles)
    return [
        p
        for p in profiles
        if needle in p.username.lower() or needle in (p.email or "").lower()
    ]


class DirectoryService:
    def __init__(
        self,
        backend: ChatBackend,
        debounce_seconds: Optional[float] = None,
        session: Optional[SessionManager] = None,
    ) -> None:
        self._backend = backend
        delay = (
            debounce_seconds
            if debounce_seconds is not None
            else get_settings().search_debounce
        )
        self._profiles: List[Profile] = []
        self._loaded_for: Optional[str] = None
        self.query = ""
        self.visible: List[Profile] = []
        self._debouncer = Debouncer(self._apply_query, delay)
        self._listeners: Dict[int, DirectoryCallback] = {}
        self._listener_ids = itertools.count(1)
        self._identity_id: Optional[str] = None
        self._unsubscribe_session: Optional[Callable[[], None]] = None
        if session is not None:
            self._identity_id = session.identity.id if session.identity else None
            self._unsubscribe_session = session.subscribe(self._on_auth_state)

    @property
    def profiles(self) -> List[Profile]:
        return list(self._profiles)

    def on_change(self, callback: DirectoryCallback) -> Callable[[], None]:
        listener_id = next(self._listener_ids)
        self._listeners[listener_id] = callback
        return lambda: self._listeners.pop(listener_id, None)

    async def load(self, own_profile_id: str, force: bool = False) -> List[Profile]:
        """Fetch everyone except `own_profile_id`, once per profile unless forced."""
        if self._loaded_for == own_profile_id and not force:
            return self.profiles
        profiles = await self._backend.list_profiles(own_profile_id)
        self._profiles = profiles
        self._loaded_for = own_profile_id
        logger.debug("Loaded %d directory profiles", len(profiles))
        self._apply_query(self.query)
        return self.profiles

    def search(self, query: str) -> None:
        """Filter the cached list after the debounce delay."""
        self._debouncer.call(query)

    def _apply_query(self, query: str) -> None:
        self.query = query
        self.visible = filter_profiles(self._profiles, query)
        for callback in list(self._listeners.values()):
            try:
                callback(list(self.visible))
            except Exception:
                logger.exception("Directory listener failed")

    def _on_auth_state(self, state: AuthState) -> None:
        identity_id = state.identity.id if state.identity else None
        if identity_id == self._identity_id:
            return
        self._identity_id = identity_id
        self.reset()

    def reset(self) -> None:
        """Forget the cached list. Runs on sign-out or identity switch when bound to a session."""
        self._debouncer.cancel()
        self._profiles = []
        self._loaded_for = None
        self._apply_query("")

    def close(self) -> None:
        if self._unsubscribe_session is not None:
            self._unsubscribe_session()
            self._unsubscribe_session = None
        self._debouncer.dispose()
        self._listeners.clear()
