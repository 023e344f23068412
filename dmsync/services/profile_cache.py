"""ProfileCache: memoized directory lookups keyed by identity (user_id)."""

from __future__ import annotations

from typing import Dict, Optional

from dmsync.backend.base import ChatBackend
from dmsync.exceptions import NotFoundError
from dmsync.infra.logging_config import get_logger
from dmsync.schemas.profile import Profile

logger = get_logger("profile_cache")


class ProfileCache:
    """
    Lookup-or-fetch cache of profiles, alive for one auth session.

    Concurrent misses for the same key may each hit the backend; the first
    successful fetch becomes canonical. Missing profiles are not cached so a
    profile provisioned later shows up on the next lookup. A fetch that was in
    flight when the cache got cleared is returned to its caller but not stored.
    """

    def __init__(self, backend: ChatBackend) -> None:
        self._backend = backend
        self._profiles: Dict[str, Profile] = {}
        self._epoch = 0

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._profiles

    def __len__(self) -> int:
        return len(self._profiles)

    def peek(self, user_id: str) -> Optional[Profile]:
        return self._profiles.get(user_id)

    async def get(self, user_id: str) -> Optional[Profile]:
        cached = self._profiles.get(user_id)
        if cached is not None:
            return cached
        epoch = self._epoch
        try:
            profile = await self._backend.fetch_profile(user_id)
        except NotFoundError:
            logger.debug("No profile yet for user %s", user_id)
            return None
        if epoch != self._epoch:
            return profile
        return self._profiles.setdefault(user_id, profile)

    def clear(self) -> None:
        self._epoch += 1
        self._profiles.clear()
