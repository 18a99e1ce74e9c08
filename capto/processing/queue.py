"""Bounded worker pool that runs entry orchestration in the background."""

import asyncio
import logging
from dataclasses import replace

from capto.config import DEFAULT_MAX_CONCURRENT
from capto.errors import EntryBusy
from capto.processing.pipeline import CancelToken, Orchestrator
from capto.storage.database import EntryStore
from capto.storage.models import ProcessingStats

logger = logging.getLogger(__name__)


class ProcessingQueue:
    """Schedule entries onto at most ``max_concurrent`` pipelines.

    Each entry id is queued or running at most once at a time. Failures of
    one entry are logged and never reach other entries or the workers.
    """

    def __init__(
        self,
        orchestrator: Orchestrator,
        store: EntryStore,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
    ):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.orchestrator = orchestrator
        self.store = store
        self.max_concurrent = max_concurrent

        self._queue: asyncio.Queue[str] | None = None
        self._workers: list[asyncio.Task[None]] = []
        self._queued: set[str] = set()
        self._in_flight: set[str] = set()
        self._tokens: dict[str, CancelToken] = {}
        self._stats = ProcessingStats()

    @property
    def stats(self) -> ProcessingStats:
        return self._stats

    @property
    def active(self) -> int:
        """Number of pipelines running right now."""
        return len(self._in_flight)

    @property
    def in_flight(self) -> frozenset[str]:
        return frozenset(self._in_flight)

    @property
    def pending(self) -> int:
        return len(self._queued)

    def is_running(self) -> bool:
        return bool(self._workers)

    async def start(self) -> None:
        if self._workers:
            return
        queue: asyncio.Queue[str] = asyncio.Queue()
        self._queue = queue
        self._workers = [
            asyncio.create_task(self._worker(n, queue), name=f"capto-worker-{n}")
            for n in range(self.max_concurrent)
        ]
        logger.info(f"Processing queue started with {self.max_concurrent} workers")

    async def stop(self, grace: float = 5.0) -> None:
        """Let queued work finish for up to ``grace`` seconds, then cancel it."""
        if not self._workers or self._queue is None:
            return

        try:
            await asyncio.wait_for(self._queue.join(), grace)
        except TimeoutError:
            logger.warning(f"Cancelling {self.active} running and {self.pending} queued entries")
            for token in self._tokens.values():
                token.cancel()

        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        self._queue = None
        self._queued.clear()
        logger.info("Processing queue stopped")

    def submit(self, entry_id: str) -> bool:
        """Queue an entry. Returns False if it is already queued or running."""
        if self._queue is None:
            raise RuntimeError("Processing queue is not running")
        if entry_id in self._queued or entry_id in self._in_flight:
            logger.debug(f"Entry {entry_id} already scheduled")
            return False
        self._queued.add(entry_id)
        self._queue.put_nowait(entry_id)
        return True

    async def sweep(self) -> int:
        """Queue every entry that has never been processed."""
        entries = await self.store.list_without_ai_metadata()
        submitted = sum(1 for entry in entries if self.submit(entry.id))
        if submitted:
            logger.info(f"Sweep queued {submitted} unprocessed entries")
        return submitted

    async def join(self) -> None:
        """Wait until everything queued so far has been processed."""
        if self._queue is not None:
            await self._queue.join()

    async def _worker(self, number: int, queue: asyncio.Queue[str]) -> None:
        while True:
            entry_id = await queue.get()
            self._queued.discard(entry_id)
            self._in_flight.add(entry_id)
            token = CancelToken()
            self._tokens[entry_id] = token
            self._stats = replace(self._stats, currently_processing=len(self._in_flight))

            processed = False
            cost = 0.0
            try:
                report = await self.orchestrator.process(entry_id, token)
                processed = not report.skipped
                cost = report.total_cost
            except EntryBusy:
                logger.info(f"Entry {entry_id} is busy elsewhere, not processing")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Worker {number} failed on entry {entry_id}: {e}")
            finally:
                self._in_flight.discard(entry_id)
                self._tokens.pop(entry_id, None)
                self._stats = ProcessingStats(
                    total_processed=self._stats.total_processed + (1 if processed else 0),
                    total_cost=self._stats.total_cost + cost,
                    currently_processing=len(self._in_flight),
                )
                queue.task_done()
