"""In-memory directory mapping callers to upstream conversation threads."""

from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Protocol

logger = logging.getLogger(__name__)


class ConversationFactory(Protocol):
    async def create_conversation(self) -> str: ...


class SessionDirectory:
    """Maps a caller identity to its long-lived upstream thread.

    Lookups are lock-free. Two concurrent first requests for the same
    identity may both create a thread; the last insert wins and later
    requests converge on it.
    """

    def __init__(self, factory: ConversationFactory, max_entries: int | None = None) -> None:
        self._factory = factory
        self._max_entries = max_entries
        self._handles: OrderedDict[str, str] = OrderedDict()

    def __len__(self) -> int:
        return len(self._handles)

    def __contains__(self, identity: object) -> bool:
        return identity in self._handles

    def get(self, identity: str) -> str | None:
        """Return the stored handle without creating one."""
        return self._handles.get(identity)

    async def resolve(self, identity: str) -> str:
        """Return the handle for ``identity``, creating it upstream on first contact.

        Creation errors propagate and leave the directory unchanged.
        """
        handle = self._handles.get(identity)
        if handle is not None:
            if self._max_entries is not None:
                self._handles.move_to_end(identity)
            return handle

        handle = await self._factory.create_conversation()
        self._handles[identity] = handle
        logger.info("Created thread %s for %s", handle, identity)
        self._evict()
        return handle

    def _evict(self) -> None:
        if self._max_entries is None:
            return
        while len(self._handles) > self._max_entries:
            identity, handle = self._handles.popitem(last=False)
            logger.info("Evicted thread %s for %s", handle, identity)
