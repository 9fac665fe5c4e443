"""Presence registry: user id -> live connection handles.

The registry is the only writer of a user's ``isOnline`` flag and
``lastSeen`` timestamp. Transitions for one user are serialized by a
per-user lock, and the store write happens inside that lock, so a
reconnect racing a disconnect always leaves the flag matching the
handle set.

State is process-local and lost on restart.
"""
import asyncio
import logging
import weakref
from typing import Dict, Optional, Set

from parley.store import ChatStore
from parley.store.service import utcnow

logger = logging.getLogger(__name__)


class PresenceRegistry:
    """Tracks which users are reachable and through which connections."""

    def __init__(self, store: Optional[ChatStore] = None) -> None:
        self._store = store
        self._handles: Dict[str, Set[str]] = {}
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        return lock

    async def register(self, user_id: str, handle: str) -> bool:
        """Add a connection handle for a user.

        Returns:
            True if this was the user's first live connection (offline -> online).
        """
        async with self._lock(user_id):
            handles = self._handles.setdefault(user_id, set())
            came_online = not handles
            handles.add(handle)
            if came_online:
                if self._store is not None:
                    self._store.set_presence(user_id, True, utcnow())
                logger.info("[Presence] %s is online", user_id)
            return came_online

    async def unregister(self, user_id: str, handle: str) -> bool:
        """Remove a connection handle.

        Returns:
            True if no handles remain for the user (online -> offline).
        """
        async with self._lock(user_id):
            handles = self._handles.get(user_id)
            if not handles or handle not in handles:
                return False
            handles.discard(handle)
            if handles:
                return False
            del self._handles[user_id]
            if self._store is not None:
                self._store.set_presence(user_id, False, utcnow())
            logger.info("[Presence] %s is offline", user_id)
            return True

    def is_online(self, user_id: str) -> bool:
        return bool(self._handles.get(user_id))

    def connections_for(self, user_id: str) -> Set[str]:
        return set(self._handles.get(user_id, ()))
