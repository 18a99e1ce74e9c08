"""Per-entry locking and durable action ledger writes."""

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from capto.errors import EntryBusy, EntryNotFound
from capto.storage.database import EntryStore
from capto.storage.models import AIAction, AIMetadata, Entry, ProcessingMeta, ResearchResults

logger = logging.getLogger(__name__)


class EntryLocks:
    """At most one holder per entry id at any time."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def is_locked(self, entry_id: str) -> bool:
        lock = self._locks.get(entry_id)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, entry_id: str, *, wait: bool = True) -> AsyncGenerator[None, None]:
        """Hold the lock for an entry.

        With ``wait=False`` an already held lock raises EntryBusy instead of
        queueing behind the holder.
        """
        lock = self._locks.setdefault(entry_id, asyncio.Lock())
        if not wait and lock.locked():
            raise EntryBusy(f"Entry {entry_id} is already being processed")

        self._users[entry_id] = self._users.get(entry_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[entry_id] -= 1
            if self._users[entry_id] == 0:
                del self._users[entry_id]
                del self._locks[entry_id]


class ActionLedger:
    """Read-modify-write access to an entry's AI metadata.

    Every write replaces whole AIAction values and persists the full entry, so
    no partial state is ever stored. Writers must hold the entry's lock.
    """

    def __init__(self, store: EntryStore, locks: EntryLocks):
        self.store = store
        self.locks = locks

    async def load(self, entry_id: str) -> Entry:
        entry = await self.store.get(entry_id)
        if entry is None:
            raise EntryNotFound(entry_id)
        return entry

    def _require_lock(self, entry_id: str) -> None:
        if not self.locks.is_locked(entry_id):
            raise RuntimeError(f"Ledger write for entry {entry_id} without holding its lock")

    async def attach(self, entry_id: str, metadata: AIMetadata) -> Entry:
        """Replace the entry's metadata wholesale."""
        self._require_lock(entry_id)
        entry = await self.load(entry_id)
        entry.ai_metadata = metadata
        await self.store.update(entry)
        logger.debug(f"Attached {len(metadata.actions)} actions to entry {entry_id}")
        return entry

    async def replace_action(self, entry_id: str, action: AIAction) -> Entry:
        """Persist a new version of one action."""
        self._require_lock(entry_id)
        entry = await self.load(entry_id)
        if entry.ai_metadata is None:
            raise KeyError(action.id)
        entry.ai_metadata.replace_action(action)
        await self.store.update(entry)
        logger.debug(f"Action {action.id} on entry {entry_id} is now {action.status.value}")
        return entry

    async def set_research(self, entry_id: str, research: ResearchResults | None) -> Entry:
        self._require_lock(entry_id)
        entry = await self.load(entry_id)
        metadata = entry.ai_metadata or AIMetadata()
        metadata.research_results = research
        entry.ai_metadata = metadata
        await self.store.update(entry)
        return entry

    async def finish(self, entry_id: str, processing_meta: ProcessingMeta) -> Entry:
        self._require_lock(entry_id)
        entry = await self.load(entry_id)
        metadata = entry.ai_metadata or AIMetadata()
        metadata.processing_meta = processing_meta
        entry.ai_metadata = metadata
        await self.store.update(entry)
        return entry
