"""Async SQLite entry store and schema management."""

import json
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from pathlib import Path

import aiosqlite

from capto.config import DEFAULT_DB_PATH
from capto.errors import EntryNotFound
from capto.storage.models import (
    ActionStatus,
    AIMetadata,
    Entry,
    EntryStatus,
    EntryType,
    UsageStats,
)

logger = logging.getLogger(__name__)

# Schema version for migrations
SCHEMA_VERSION = 1

SCHEMA_SQL = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL
);

-- Captured entries
CREATE TABLE IF NOT EXISTS entries (
    id TEXT PRIMARY KEY,
    type TEXT NOT NULL CHECK (type IN ('todo', 'piece')),
    content TEXT NOT NULL,
    trigger_used TEXT NOT NULL,
    created_at TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'open' CHECK (status IN ('open', 'done')),
    tags TEXT NOT NULL DEFAULT '[]',  -- JSON array
    source_app TEXT,
    source_url TEXT,
    ai_metadata TEXT                  -- JSON object, NULL until processed
);

CREATE INDEX IF NOT EXISTS idx_entries_type ON entries(type);
CREATE INDEX IF NOT EXISTS idx_entries_created_at ON entries(created_at DESC);
CREATE INDEX IF NOT EXISTS idx_entries_status ON entries(status);
"""


class EntryStore:
    """Durable store of captured entries.

    The AI metadata column is written opaquely; only the processing pipeline
    interprets it.
    """

    def __init__(self, db_path: Path = DEFAULT_DB_PATH):
        self.db_path = db_path

    async def initialize(self) -> None:
        """Initialize the database and apply schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        async with self.connect() as db:
            await db.executescript(SCHEMA_SQL)
            await db.execute(
                """
                INSERT OR REPLACE INTO schema_version (version, applied_at)
                VALUES (?, ?)
                """,
                (SCHEMA_VERSION, datetime.now(UTC).isoformat()),
            )
            await db.commit()
        logger.debug(f"Entry store ready at {self.db_path}")

    @asynccontextmanager
    async def connect(self) -> AsyncGenerator[aiosqlite.Connection, None]:
        """Get a database connection."""
        db = await aiosqlite.connect(self.db_path)
        db.row_factory = aiosqlite.Row
        try:
            yield db
        finally:
            await db.close()

    # ============== Entry CRUD ==============

    async def create(self, entry: Entry) -> Entry:
        """Insert a new entry."""
        async with self.connect() as db:
            await db.execute(
                """
                INSERT INTO entries (id, type, content, trigger_used, created_at,
                                     status, tags, source_app, source_url, ai_metadata)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.id,
                    entry.type.value,
                    entry.content,
                    entry.trigger_used,
                    entry.created_at.isoformat(),
                    entry.status.value,
                    json.dumps(sorted(entry.tags)),
                    entry.source_app,
                    entry.source_url,
                    self._metadata_to_json(entry.ai_metadata),
                ),
            )
            await db.commit()
        return entry

    async def get(self, entry_id: str) -> Entry | None:
        """Get an entry by ID."""
        async with self.connect() as db:
            cursor = await db.execute("SELECT * FROM entries WHERE id = ?", (entry_id,))
            row = await cursor.fetchone()
            if not row:
                return None
            return self._row_to_entry(row)

    async def update(self, entry: Entry) -> Entry:
        """Replace every mutable column of an existing entry."""
        async with self.connect() as db:
            cursor = await db.execute(
                """
                UPDATE entries SET
                    type = ?,
                    content = ?,
                    trigger_used = ?,
                    status = ?,
                    tags = ?,
                    source_app = ?,
                    source_url = ?,
                    ai_metadata = ?
                WHERE id = ?
                """,
                (
                    entry.type.value,
                    entry.content,
                    entry.trigger_used,
                    entry.status.value,
                    json.dumps(sorted(entry.tags)),
                    entry.source_app,
                    entry.source_url,
                    self._metadata_to_json(entry.ai_metadata),
                    entry.id,
                ),
            )
            await db.commit()
            if cursor.rowcount == 0:
                raise EntryNotFound(entry.id)
        return entry

    async def list_entries(
        self,
        *,
        entry_type: EntryType | None = None,
        status: EntryStatus | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Entry]:
        """List entries, newest first, with optional filters."""
        query = "SELECT * FROM entries WHERE 1=1"
        params: list = []

        if entry_type:
            query += " AND type = ?"
            params.append(entry_type.value)
        if status:
            query += " AND status = ?"
            params.append(status.value)

        query += " ORDER BY created_at DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])

        async with self.connect() as db:
            cursor = await db.execute(query, params)
            rows = await cursor.fetchall()
            return [self._row_to_entry(row) for row in rows]

    async def list_without_ai_metadata(self, limit: int | None = None) -> list[Entry]:
        """List entries the pipeline has never processed, oldest first."""
        query = "SELECT * FROM entries WHERE ai_metadata IS NULL ORDER BY created_at ASC"
        params: list = []
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        async with self.connect() as db:
            cursor = await db.execute(query, params)
            rows = await cursor.fetchall()
            return [self._row_to_entry(row) for row in rows]

    async def usage_stats(self) -> UsageStats:
        """Aggregate cost and activity over every processed entry."""
        async with self.connect() as db:
            cursor = await db.execute(
                "SELECT ai_metadata FROM entries WHERE ai_metadata IS NOT NULL"
            )
            rows = await cursor.fetchall()

        processed = 0
        executed = 0
        research = 0
        total_cost = 0.0
        for row in rows:
            metadata = AIMetadata.from_dict(json.loads(row["ai_metadata"]))
            processed += 1
            executed += sum(
                1 for a in metadata.actions if a.status == ActionStatus.EXECUTED
            )
            if metadata.research_results is not None:
                research += 1
            total_cost += metadata.total_cost

        return UsageStats(
            entries_processed=processed,
            actions_executed=executed,
            research_generated=research,
            total_cost=total_cost,
        )

    # ============== Helpers ==============

    def _metadata_to_json(self, metadata: AIMetadata | None) -> str | None:
        if metadata is None:
            return None
        return json.dumps(metadata.to_dict())

    def _row_to_entry(self, row: aiosqlite.Row) -> Entry:
        """Convert a database row to an Entry."""
        raw_metadata = row["ai_metadata"]
        return Entry(
            id=row["id"],
            type=EntryType(row["type"]),
            content=row["content"],
            trigger_used=row["trigger_used"],
            created_at=datetime.fromisoformat(row["created_at"]),
            status=EntryStatus(row["status"]),
            tags=set(json.loads(row["tags"])),
            source_app=row["source_app"],
            source_url=row["source_url"],
            ai_metadata=(
                AIMetadata.from_dict(json.loads(raw_metadata)) if raw_metadata else None
            ),
        )
