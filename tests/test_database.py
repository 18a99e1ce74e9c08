"""Tests for the entry store."""

import tempfile
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from capto.errors import EntryNotFound
from capto.storage import (
    AIAction,
    AIMetadata,
    Entry,
    EntryStatus,
    EntryStore,
    EntryType,
    MapsPayload,
    ProcessingMeta,
    ReminderPayload,
    ReminderReverse,
    ResearchResults,
)


@pytest.fixture
async def store():
    """Create a temporary entry store for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        entry_store = EntryStore(Path(tmpdir) / "test.db")
        await entry_store.initialize()
        yield entry_store


def at(minutes: int) -> datetime:
    return datetime(2026, 3, 2, 9, 0, tzinfo=UTC) + timedelta(minutes=minutes)


class TestStoreInitialization:
    """Tests for schema setup."""

    async def test_initialize_creates_tables(self, store: EntryStore):
        async with store.connect() as conn:
            cursor = await conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
            tables = {row["name"] for row in await cursor.fetchall()}

        assert {"schema_version", "entries"}.issubset(tables)

    async def test_initialize_is_idempotent(self, store: EntryStore):
        await store.initialize()

        async with store.connect() as conn:
            cursor = await conn.execute("SELECT version FROM schema_version")
            rows = await cursor.fetchall()

        assert [row["version"] for row in rows] == [1]

    async def test_initialize_creates_parent_directory(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            entry_store = EntryStore(Path(tmpdir) / "deep" / "dir" / "capto.db")
            await entry_store.initialize()

            assert entry_store.db_path.exists()


class TestEntryCRUD:
    """Tests for entry CRUD operations."""

    async def test_create_and_get(self, store: EntryStore):
        entry = Entry(
            type=EntryType.PIECE,
            content="555-123-4567 John",
            trigger_used=",,,",
            tags={"contacts", "work"},
            source_app="Messages",
        )
        await store.create(entry)

        stored = await store.get(entry.id)

        assert stored == entry

    async def test_get_missing_returns_none(self, store: EntryStore):
        assert await store.get("missing") is None

    async def test_update_persists_metadata(self, store: EntryStore):
        entry = Entry(content="Buy milk", trigger_used="///")
        await store.create(entry)

        action = (
            AIAction.create(ReminderPayload(title="Buy milk"))
            .begin()
            .succeed(ReminderReverse(reminder_id="r-1"))
        )
        entry.ai_metadata = AIMetadata(
            actions=[action],
            research_results=ResearchResults(content="# Milk"),
            processing_meta=ProcessingMeta(total_cost=0.003),
        )
        entry.mark_done()
        await store.update(entry)

        stored = await store.get(entry.id)
        assert stored is not None
        assert stored.status == EntryStatus.DONE
        assert stored.ai_metadata == entry.ai_metadata

    async def test_update_missing_raises(self, store: EntryStore):
        with pytest.raises(EntryNotFound):
            await store.update(Entry(content="never stored"))


class TestEntryQueries:
    """Tests for listing and aggregation."""

    async def test_list_newest_first_with_filters(self, store: EntryStore):
        todo = Entry(type=EntryType.TODO, content="a", created_at=at(0))
        piece = Entry(type=EntryType.PIECE, content="b", created_at=at(1))
        done = Entry(type=EntryType.TODO, content="c", created_at=at(2), status=EntryStatus.DONE)
        for entry in (todo, piece, done):
            await store.create(entry)

        assert [e.content for e in await store.list_entries()] == ["c", "b", "a"]
        assert [e.content for e in await store.list_entries(entry_type=EntryType.TODO)] == [
            "c",
            "a",
        ]
        assert [e.content for e in await store.list_entries(status=EntryStatus.OPEN)] == [
            "b",
            "a",
        ]
        assert [e.content for e in await store.list_entries(limit=1, offset=1)] == ["b"]

    async def test_list_without_ai_metadata_oldest_first(self, store: EntryStore):
        first = Entry(content="first", created_at=at(0))
        processed = Entry(
            content="processed", created_at=at(1), ai_metadata=AIMetadata()
        )
        last = Entry(content="last", created_at=at(2))
        for entry in (last, processed, first):
            await store.create(entry)

        unprocessed = await store.list_without_ai_metadata()
        assert [e.content for e in unprocessed] == ["first", "last"]
        assert len(await store.list_without_ai_metadata(limit=1)) == 1

    async def test_usage_stats(self, store: EntryStore):
        executed = (
            AIAction.create(ReminderPayload(title="x"))
            .begin()
            .succeed(ReminderReverse(reminder_id="r"))
        )
        await store.create(
            Entry(
                content="with research",
                ai_metadata=AIMetadata(
                    actions=[executed, AIAction.create(MapsPayload(query="y"))],
                    research_results=ResearchResults(content="r", cost=0.002),
                    processing_meta=ProcessingMeta(total_cost=0.004),
                ),
            )
        )
        await store.create(
            Entry(
                content="raw data",
                ai_metadata=AIMetadata(processing_meta=ProcessingMeta(total_cost=0.001)),
            )
        )
        await store.create(Entry(content="unprocessed"))

        stats = await store.usage_stats()

        assert stats.entries_processed == 2
        assert stats.actions_executed == 1
        assert stats.research_generated == 1
        assert stats.total_cost == pytest.approx(0.005)
