"""Map IdP subjects (Clerk user ids) to internal user ids.

Entries live in a ``cachetools.TTLCache`` so staleness is bounded by the TTL
and memory by ``maxsize``. Only positive lookups are cached: a subject that
is unknown now is looked up again on the next request.
"""

import logging
import threading
import time
import uuid
from typing import Callable, Optional, Protocol

from cachetools import TTLCache

from valtro.errors import UnauthorizedError

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 600.0
DEFAULT_MAX_ENTRIES = 10_000


class UserDirectory(Protocol):
    """Read-only lookup of live users by IdP subject."""

    async def internal_id_for(self, clerk_user_id: str) -> Optional[uuid.UUID]:
        """Return the internal id of the live user, or None."""
        ...


class UnknownUserError(UnauthorizedError):
    """No live user carries this IdP subject."""

    def __init__(self, clerk_user_id: str) -> None:
        super().__init__("user not found")
        self.clerk_user_id = clerk_user_id


class IdentityBridge:
    def __init__(
        self,
        directory: UserDirectory,
        *,
        ttl: float = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._directory = directory
        self._cache: TTLCache = TTLCache(maxsize=max_entries, ttl=ttl, timer=clock)
        self._lock = threading.Lock()

    async def internal_id_for(self, clerk_user_id: str) -> uuid.UUID:
        """Resolve ``clerk_user_id``; raises UnknownUserError when absent.

        Store failures propagate unchanged (InternalError from the repository).
        """
        with self._lock:
            cached = self._cache.get(clerk_user_id)
        if cached is not None:
            return cached

        internal_id = await self._directory.internal_id_for(clerk_user_id)
        if internal_id is None:
            raise UnknownUserError(clerk_user_id)

        with self._lock:
            self._cache[clerk_user_id] = internal_id
        return internal_id

    def forget(self, clerk_user_id: str) -> None:
        """Drop a cached mapping; a no-op when absent."""
        with self._lock:
            self._cache.pop(clerk_user_id, None)
        logger.debug("identity cache entry dropped", extra={"clerk_user_id": clerk_user_id})

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)
