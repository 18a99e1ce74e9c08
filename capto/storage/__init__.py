"""Storage layer - entries, action ledger data model, SQLite store."""

from capto.storage.database import EntryStore
from capto.storage.models import (
    ActionPayload,
    ActionStatus,
    ActionType,
    AIAction,
    AIMetadata,
    CalendarPayload,
    CalendarReverse,
    ContactPayload,
    ContactReverse,
    Entry,
    EntryStatus,
    EntryType,
    FailureKind,
    MapsPayload,
    ProcessingMeta,
    ProcessingStats,
    ReminderPayload,
    ReminderReverse,
    ResearchResults,
    ReverseData,
    UsageStats,
)

__all__ = [
    # Store
    "EntryStore",
    # Entries
    "Entry",
    "EntryStatus",
    "EntryType",
    # Actions
    "AIAction",
    "ActionPayload",
    "ActionStatus",
    "ActionType",
    "CalendarPayload",
    "CalendarReverse",
    "ContactPayload",
    "ContactReverse",
    "FailureKind",
    "MapsPayload",
    "ReminderPayload",
    "ReminderReverse",
    "ReverseData",
    # Metadata
    "AIMetadata",
    "ProcessingMeta",
    "ResearchResults",
    # Statistics
    "ProcessingStats",
    "UsageStats",
]
