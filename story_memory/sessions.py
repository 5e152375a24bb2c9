"""Per-session ownership of StoryMemory instances.

Each session id maps to one StoryMemory, loaded lazily from campaign
storage and guarded by its own asyncio.Lock. Work on a session happens
inside `registry.session(sid)`; when the block exits without an exception
the memory is saved back to disk. A failed block leaves the on-disk copy
untouched, but the in-memory copy keeps whatever the block did, so callers
that want an all-or-nothing turn should do their fallible work first.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from .persistence import CampaignStorage, slugify
from .store import DecayPolicy, StoryMemory

logger = logging.getLogger(__name__)


class SessionRegistry:
    def __init__(self, storage: CampaignStorage, decay: DecayPolicy | None = None) -> None:
        self._storage = storage
        self._decay = decay
        self._memories: dict[str, StoryMemory] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def storage(self) -> CampaignStorage:
        return self._storage

    def _lock(self, sid: str) -> asyncio.Lock:
        lock = self._locks.get(sid)
        if lock is None:
            lock = self._locks[sid] = asyncio.Lock()
        return lock

    def _load(self, sid: str) -> StoryMemory:
        memory = self._memories.get(sid)
        if memory is None:
            memory = self._storage.load(sid, self._decay)
            if memory is None:
                logger.info("starting new session %s", sid)
                memory = StoryMemory(self._decay)
            self._memories[sid] = memory
        return memory

    def exists(self, sid: str) -> bool:
        sid = slugify(sid)
        return sid in self._memories or self._storage.exists(sid)

    @asynccontextmanager
    async def session(
        self, sid: str, *, save: bool = True,
    ) -> AsyncIterator[StoryMemory]:
        """Exclusive access to a session's memory, saved on clean exit.

        Unknown sessions start empty. Read-only callers pass `save=False`
        to skip the write.
        """
        sid = slugify(sid)
        async with self._lock(sid):
            memory = self._load(sid)
            yield memory
            if save:
                self._storage.save(sid, memory)

    def forget(self, sid: str) -> None:
        """Drop the cached memory; the next access reloads from disk."""
        self._memories.pop(slugify(sid), None)
