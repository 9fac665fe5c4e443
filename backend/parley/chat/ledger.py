"""Unread ledger: (chat id, user id) -> count of unseen messages.

Counters are stored on the chat membership rows, so ``increment`` and
``reset`` are single statements against the store. Resets additionally
take a per-(chat, user) lock so a reset and the read that caused it are
not interleaved with another reset for the same key. Idle locks are
dropped as soon as nobody holds or waits on them.
"""
import asyncio
import logging
import weakref
from typing import List, Tuple

from parley.store import ChatStore

logger = logging.getLogger(__name__)


class UnreadLedger:
    """Per-chat, per-user unread counters with atomic updates."""

    def __init__(self, store: ChatStore) -> None:
        self._store = store
        self._locks: "weakref.WeakValueDictionary[Tuple[str, str], asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock(self, chat_id: str, user_id: str) -> asyncio.Lock:
        lock = self._locks.get((chat_id, user_id))
        if lock is None:
            lock = self._locks[(chat_id, user_id)] = asyncio.Lock()
        return lock

    async def increment(self, chat_id: str, exclude_user_id: str) -> List[str]:
        """Add one for every current participant except ``exclude_user_id``.

        Raises:
            NotFound: If the chat does not exist.
        """
        bumped = self._store.increment_unread(chat_id, exclude_user_id)
        logger.debug("[Ledger] chat=%s incremented for %d members", chat_id, len(bumped))
        return bumped

    async def reset(self, chat_id: str, user_id: str) -> int:
        """Set the counter to zero and return the previous value."""
        async with self._lock(chat_id, user_id):
            return self._store.reset_unread(chat_id, user_id)

    async def get(self, chat_id: str, user_id: str) -> int:
        return self._store.get_unread(chat_id, user_id)
