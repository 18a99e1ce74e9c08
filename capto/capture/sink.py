"""Turn finished captures into stored entries and schedule their processing."""

import asyncio
import logging
from collections.abc import Callable
from concurrent.futures import Future

from capto.capture.monitor import CaptureResult
from capto.capture.triggers import clean_content, detect_entry_type
from capto.processing.queue import ProcessingQueue
from capto.storage.database import EntryStore
from capto.storage.models import Entry

logger = logging.getLogger(__name__)


class EntryCreator:
    """Consumes each CaptureResult once to create an Entry."""

    def __init__(self, store: EntryStore, queue: ProcessingQueue | None = None):
        self.store = store
        self.queue = queue
        self._pending: set[Future[Entry | None]] = set()

    async def create(self, result: CaptureResult) -> Entry | None:
        """Store the capture as an entry and queue it for processing.

        Returns None when nothing is left after removing an inline type prefix.
        """
        content = clean_content(result.content)
        if not content:
            logger.debug(f"Capture via {result.trigger!r} is empty after cleaning")
            return None

        entry = Entry(
            type=detect_entry_type(result.content, result.entry_type),
            content=content,
            trigger_used=result.trigger,
            created_at=result.started_at,
            source_app=result.context.app_name,
            source_url=result.context.url,
        )
        await self.store.create(entry)
        logger.info(f"Created {entry.type.value} entry {entry.id}")

        if self.queue is not None and self.queue.is_running():
            self.queue.submit(entry.id)
        return entry

    def threadsafe_dispatch(
        self, loop: asyncio.AbstractEventLoop
    ) -> Callable[[CaptureResult], None]:
        """Build a dispatch callable the monitor thread can call without waiting."""

        def _done(future: Future[Entry | None]) -> None:
            self._pending.discard(future)
            if future.cancelled():
                return
            error = future.exception()
            if error is not None:
                logger.error(f"Failed to store capture: {error}")

        def dispatch(result: CaptureResult) -> None:
            future = asyncio.run_coroutine_threadsafe(self.create(result), loop)
            self._pending.add(future)
            future.add_done_callback(_done)

        return dispatch

    async def drain(self) -> None:
        """Wait for captures handed over from other threads to be stored."""
        pending = [asyncio.wrap_future(f) for f in list(self._pending)]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
