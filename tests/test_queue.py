"""Tests for the background processing queue."""

import asyncio
import tempfile
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from capto.errors import EntryBusy
from capto.processing import Orchestrator, ProcessingQueue, ProcessingReport
from capto.storage import AIMetadata, Entry, EntryStore


@pytest.fixture
async def store():
    """Create a temporary entry store for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        entry_store = EntryStore(Path(tmpdir) / "test.db")
        await entry_store.initialize()
        yield entry_store


class ConcurrencyTracker:
    """Fake orchestrator run that records how many runs overlap."""

    def __init__(self, delay: float = 0.02, cost: float = 0.01):
        self.delay = delay
        self.cost = cost
        self.active = 0
        self.peak = 0
        self.seen: list[str] = []

    async def process(self, entry_id, cancel=None, force=False) -> ProcessingReport:
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.active -= 1
        self.seen.append(entry_id)
        return ProcessingReport(entry_id=entry_id, total_cost=self.cost)


def make_orchestrator(process) -> MagicMock:
    orchestrator = MagicMock(spec=Orchestrator)
    orchestrator.process = AsyncMock(side_effect=process)
    return orchestrator


class TestQueueLifecycle:
    """Tests for starting, submitting and stopping."""

    async def test_max_concurrent_must_be_positive(self, store):
        orchestrator = make_orchestrator(ConcurrencyTracker().process)

        with pytest.raises(ValueError):
            ProcessingQueue(orchestrator, store, max_concurrent=0)

    async def test_submit_before_start(self, store):
        queue = ProcessingQueue(make_orchestrator(ConcurrencyTracker().process), store)

        with pytest.raises(RuntimeError):
            queue.submit("entry-1")

    async def test_duplicate_submission_is_rejected(self, store):
        queue = ProcessingQueue(make_orchestrator(ConcurrencyTracker().process), store)
        await queue.start()
        try:
            assert queue.submit("entry-1")
            assert not queue.submit("entry-1")
            assert queue.pending == 1
            await queue.join()
        finally:
            await queue.stop()

        assert not queue.is_running()

    async def test_stop_cancels_slow_work(self, store):
        tracker = ConcurrencyTracker(delay=10)
        queue = ProcessingQueue(make_orchestrator(tracker.process), store)
        await queue.start()
        queue.submit("slow")
        await asyncio.sleep(0.01)

        await asyncio.wait_for(queue.stop(grace=0.05), 2)

        assert not queue.is_running()
        assert tracker.seen == []


class TestQueueProcessing:
    """Tests for running entries through the orchestrator."""

    async def test_concurrency_is_bounded(self, store):
        tracker = ConcurrencyTracker()
        queue = ProcessingQueue(make_orchestrator(tracker.process), store, max_concurrent=2)
        await queue.start()
        try:
            for n in range(6):
                queue.submit(f"entry-{n}")
            await queue.join()
        finally:
            await queue.stop()

        assert sorted(tracker.seen) == [f"entry-{n}" for n in range(6)]
        assert tracker.peak == 2

    async def test_stats(self, store):
        tracker = ConcurrencyTracker(delay=0, cost=0.01)
        queue = ProcessingQueue(make_orchestrator(tracker.process), store)
        await queue.start()
        try:
            for n in range(3):
                queue.submit(f"entry-{n}")
            await queue.join()
        finally:
            await queue.stop()

        stats = queue.stats
        assert stats.total_processed == 3
        assert stats.total_cost == pytest.approx(0.03)
        assert stats.currently_processing == 0
        assert stats.average_cost_per_entry == pytest.approx(0.01)

    async def test_skipped_and_busy_entries_are_not_counted(self, store):
        async def process(entry_id, cancel=None, force=False):
            if entry_id == "busy":
                raise EntryBusy(entry_id)
            return ProcessingReport(entry_id=entry_id, skipped=True)

        queue = ProcessingQueue(make_orchestrator(process), store)
        await queue.start()
        try:
            queue.submit("busy")
            queue.submit("done-already")
            await queue.join()
        finally:
            await queue.stop()

        assert queue.stats.total_processed == 0

    async def test_one_failure_does_not_affect_others(self, store):
        processed = []

        async def process(entry_id, cancel=None, force=False):
            if entry_id == "bad":
                raise RuntimeError("boom")
            processed.append(entry_id)
            return ProcessingReport(entry_id=entry_id)

        queue = ProcessingQueue(make_orchestrator(process), store, max_concurrent=1)
        await queue.start()
        try:
            for entry_id in ("bad", "good-1", "good-2"):
                queue.submit(entry_id)
            await queue.join()
        finally:
            await queue.stop()

        assert processed == ["good-1", "good-2"]

    async def test_sweep_queues_unprocessed_entries(self, store):
        unprocessed = [Entry(content="one"), Entry(content="two")]
        for entry in unprocessed:
            await store.create(entry)
        await store.create(Entry(content="done", ai_metadata=AIMetadata()))

        tracker = ConcurrencyTracker(delay=0)
        queue = ProcessingQueue(make_orchestrator(tracker.process), store)
        await queue.start()
        try:
            assert await queue.sweep() == 2
            await queue.join()
        finally:
            await queue.stop()

        assert sorted(tracker.seen) == sorted(e.id for e in unprocessed)
