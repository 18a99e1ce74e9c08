"""Data models for captured entries and their action ledger."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from capto.errors import IllegalTransition

PROCESSING_VERSION = "v1.0"


def _utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(UTC)


def _new_id() -> str:
    return str(uuid4())


def _dt_to_str(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _dt_from_str(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class EntryType(str, Enum):
    """Kind of captured entry."""

    TODO = "todo"
    PIECE = "piece"


class EntryStatus(str, Enum):
    """Completion state. Only meaningful for todos."""

    OPEN = "open"
    DONE = "done"


class ActionType(str, Enum):
    """Kind of external side effect."""

    REMINDER = "reminder"
    CALENDAR = "calendar"
    CONTACT = "contact"
    MAPS = "maps"


class ActionStatus(str, Enum):
    """Lifecycle of an action in the ledger."""

    PENDING = "pending"
    EXECUTING = "executing"
    EXECUTED = "executed"
    FAILED = "failed"
    REVERSED = "reversed"


class FailureKind(str, Enum):
    """Why an action ended up failed."""

    PERMISSION_DENIED = "permission_denied"
    FAILED = "failed"


# ============== Action payloads ==============


@dataclass(frozen=True)
class ReminderPayload:
    title: str
    notes: str | None = None
    due: datetime | None = None

    action_type = ActionType.REMINDER

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.action_type.value,
            "title": self.title,
            "notes": self.notes,
            "due": _dt_to_str(self.due),
        }


@dataclass(frozen=True)
class CalendarPayload:
    title: str
    start: datetime
    end: datetime
    notes: str | None = None
    location: str | None = None

    action_type = ActionType.CALENDAR

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.action_type.value,
            "title": self.title,
            "start": _dt_to_str(self.start),
            "end": _dt_to_str(self.end),
            "notes": self.notes,
            "location": self.location,
        }


@dataclass(frozen=True)
class ContactPayload:
    first_name: str
    last_name: str | None = None
    phone: str | None = None
    email: str | None = None
    notes: str | None = None

    action_type = ActionType.CONTACT

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.action_type.value,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "phone": self.phone,
            "email": self.email,
            "notes": self.notes,
        }


@dataclass(frozen=True)
class MapsPayload:
    query: str

    action_type = ActionType.MAPS

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.action_type.value, "query": self.query}


ActionPayload = ReminderPayload | CalendarPayload | ContactPayload | MapsPayload


def payload_from_dict(data: dict[str, Any]) -> ActionPayload:
    """Rebuild an action payload from its tagged dictionary form."""
    action_type = ActionType(data["type"])
    if action_type == ActionType.REMINDER:
        return ReminderPayload(
            title=data["title"],
            notes=data.get("notes"),
            due=_dt_from_str(data.get("due")),
        )
    if action_type == ActionType.CALENDAR:
        return CalendarPayload(
            title=data["title"],
            start=datetime.fromisoformat(data["start"]),
            end=datetime.fromisoformat(data["end"]),
            notes=data.get("notes"),
            location=data.get("location"),
        )
    if action_type == ActionType.CONTACT:
        return ContactPayload(
            first_name=data["first_name"],
            last_name=data.get("last_name"),
            phone=data.get("phone"),
            email=data.get("email"),
            notes=data.get("notes"),
        )
    return MapsPayload(query=data["query"])


# ============== Reverse payloads ==============


@dataclass(frozen=True)
class ReminderReverse:
    reminder_id: str

    action_type = ActionType.REMINDER

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.action_type.value, "reminder_id": self.reminder_id}


@dataclass(frozen=True)
class CalendarReverse:
    event_id: str
    start: datetime
    end: datetime

    action_type = ActionType.CALENDAR

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.action_type.value,
            "event_id": self.event_id,
            "start": _dt_to_str(self.start),
            "end": _dt_to_str(self.end),
        }


@dataclass(frozen=True)
class ContactReverse:
    contact_id: str

    action_type = ActionType.CONTACT

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.action_type.value, "contact_id": self.contact_id}


ReverseData = ReminderReverse | CalendarReverse | ContactReverse


def reverse_from_dict(data: dict[str, Any]) -> ReverseData:
    """Rebuild reverse data from its tagged dictionary form."""
    action_type = ActionType(data["type"])
    if action_type == ActionType.REMINDER:
        return ReminderReverse(reminder_id=data["reminder_id"])
    if action_type == ActionType.CALENDAR:
        return CalendarReverse(
            event_id=data["event_id"],
            start=datetime.fromisoformat(data["start"]),
            end=datetime.fromisoformat(data["end"]),
        )
    if action_type == ActionType.CONTACT:
        return ContactReverse(contact_id=data["contact_id"])
    raise ValueError(f"Action type {action_type.value} has no reverse data")


# ============== Actions ==============


@dataclass(frozen=True)
class AIAction:
    """One externally executed side effect derived from an entry.

    Instances are immutable: every status change returns a replacement, so the
    ledger always persists a complete action. Allowed edges are
    pending -> executing -> executed | failed, executed -> reversed, and the
    user-triggered retry failed -> executing.
    """

    data: ActionPayload
    id: str = field(default_factory=_new_id)
    status: ActionStatus = ActionStatus.PENDING
    reversible: bool = True
    executed_at: datetime | None = None
    reverse_data: ReverseData | None = None
    error: str | None = None
    error_kind: FailureKind | None = None

    @property
    def type(self) -> ActionType:
        return self.data.action_type

    @classmethod
    def create(cls, data: ActionPayload) -> AIAction:
        """Create a pending action; maps actions have nothing to undo."""
        return cls(data=data, reversible=data.action_type != ActionType.MAPS)

    def _check(self, target: ActionStatus, *allowed: ActionStatus) -> None:
        if self.status not in allowed:
            raise IllegalTransition(self.id, self.status.value, target.value)

    def begin(self) -> AIAction:
        """Move to executing (from pending, or from failed for a user retry)."""
        self._check(ActionStatus.EXECUTING, ActionStatus.PENDING, ActionStatus.FAILED)
        return replace(self, status=ActionStatus.EXECUTING, error=None, error_kind=None)

    def succeed(
        self, reverse_data: ReverseData | None, at: datetime | None = None
    ) -> AIAction:
        """Record a completed side effect."""
        self._check(ActionStatus.EXECUTED, ActionStatus.EXECUTING)
        if self.reversible and reverse_data is None:
            raise ValueError(f"Reversible action {self.id} needs reverse data")
        if reverse_data is not None and reverse_data.action_type != self.type:
            raise ValueError(
                f"Reverse data for {reverse_data.action_type.value} "
                f"does not fit a {self.type.value} action"
            )
        return replace(
            self,
            status=ActionStatus.EXECUTED,
            reverse_data=reverse_data,
            executed_at=at or _utc_now(),
        )

    def fail(self, kind: FailureKind, message: str) -> AIAction:
        """Record a failed attempt. Never retried automatically."""
        self._check(ActionStatus.FAILED, ActionStatus.EXECUTING)
        return replace(self, status=ActionStatus.FAILED, error=message, error_kind=kind)

    def mark_reversed(self) -> AIAction:
        """Record a completed undo. Terminal."""
        self._check(ActionStatus.REVERSED, ActionStatus.EXECUTED)
        return replace(self, status=ActionStatus.REVERSED)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "status": self.status.value,
            "data": self.data.to_dict(),
            "reversible": self.reversible,
            "executed_at": _dt_to_str(self.executed_at),
            "reverse_data": self.reverse_data.to_dict() if self.reverse_data else None,
            "error": self.error,
            "error_kind": self.error_kind.value if self.error_kind else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AIAction:
        reverse = data.get("reverse_data")
        error_kind = data.get("error_kind")
        return cls(
            id=data["id"],
            data=payload_from_dict(data["data"]),
            status=ActionStatus(data["status"]),
            reversible=bool(data.get("reversible", True)),
            executed_at=_dt_from_str(data.get("executed_at")),
            reverse_data=reverse_from_dict(reverse) if reverse else None,
            error=data.get("error"),
            error_kind=FailureKind(error_kind) if error_kind else None,
        )


# ============== Research and processing metadata ==============


@dataclass(frozen=True)
class ResearchResults:
    """Markdown research summary. Regeneration replaces it wholesale."""

    content: str
    generated_at: datetime = field(default_factory=_utc_now)
    cost: float = 0.0
    processing_time_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "content": self.content,
            "generated_at": _dt_to_str(self.generated_at),
            "cost": self.cost,
            "processing_time_ms": self.processing_time_ms,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ResearchResults:
        return cls(
            content=data["content"],
            generated_at=datetime.fromisoformat(data["generated_at"]),
            cost=float(data.get("cost", 0.0)),
            processing_time_ms=int(data.get("processing_time_ms", 0)),
        )


@dataclass(frozen=True)
class ProcessingMeta:
    """Summary of one orchestration run."""

    processed_at: datetime = field(default_factory=_utc_now)
    total_cost: float = 0.0
    processing_time_ms: int = 0
    version: str = PROCESSING_VERSION
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed_at": _dt_to_str(self.processed_at),
            "total_cost": self.total_cost,
            "processing_time_ms": self.processing_time_ms,
            "version": self.version,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProcessingMeta:
        return cls(
            processed_at=datetime.fromisoformat(data["processed_at"]),
            total_cost=float(data.get("total_cost", 0.0)),
            processing_time_ms=int(data.get("processing_time_ms", 0)),
            version=data.get("version", PROCESSING_VERSION),
            error=data.get("error"),
        )


@dataclass
class AIMetadata:
    """Everything the orchestration pipeline attaches to an entry."""

    actions: list[AIAction] = field(default_factory=list)
    research_results: ResearchResults | None = None
    processing_meta: ProcessingMeta | None = None

    def find_action(self, action_id: str) -> AIAction | None:
        for action in self.actions:
            if action.id == action_id:
                return action
        return None

    def replace_action(self, action: AIAction) -> None:
        """Swap in a new version of an existing action, keeping ledger order."""
        for index, existing in enumerate(self.actions):
            if existing.id == action.id:
                if existing.type != action.type:
                    raise ValueError(f"Action {action.id} cannot change type")
                self.actions[index] = action
                return
        raise KeyError(action.id)

    @property
    def executed_actions(self) -> list[AIAction]:
        return [a for a in self.actions if a.status == ActionStatus.EXECUTED]

    @property
    def pending_actions(self) -> list[AIAction]:
        return [a for a in self.actions if a.status == ActionStatus.PENDING]

    @property
    def total_cost(self) -> float:
        research_cost = self.research_results.cost if self.research_results else 0.0
        meta_cost = self.processing_meta.total_cost if self.processing_meta else 0.0
        # Processing cost already includes research when both are set
        return max(research_cost, meta_cost)

    def to_dict(self) -> dict[str, Any]:
        return {
            "actions": [a.to_dict() for a in self.actions],
            "research_results": (
                self.research_results.to_dict() if self.research_results else None
            ),
            "processing_meta": (
                self.processing_meta.to_dict() if self.processing_meta else None
            ),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AIMetadata:
        research = data.get("research_results")
        meta = data.get("processing_meta")
        return cls(
            actions=[AIAction.from_dict(a) for a in data.get("actions", [])],
            research_results=ResearchResults.from_dict(research) if research else None,
            processing_meta=ProcessingMeta.from_dict(meta) if meta else None,
        )


# ============== Entries ==============


@dataclass
class Entry:
    """A captured unit of text."""

    type: EntryType = EntryType.TODO
    content: str = ""
    trigger_used: str = ""
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=_utc_now)
    status: EntryStatus = EntryStatus.OPEN
    tags: set[str] = field(default_factory=set)
    source_app: str | None = None
    source_url: str | None = None
    ai_metadata: AIMetadata | None = None

    @property
    def is_todo(self) -> bool:
        return self.type == EntryType.TODO

    @property
    def needs_processing(self) -> bool:
        return self.ai_metadata is None

    def mark_done(self) -> None:
        if self.is_todo:
            self.status = EntryStatus.DONE

    def mark_open(self) -> None:
        if self.is_todo:
            self.status = EntryStatus.OPEN


# ============== Statistics ==============


@dataclass(frozen=True)
class ProcessingStats:
    """Running statistics of the processing queue."""

    total_processed: int = 0
    total_cost: float = 0.0
    currently_processing: int = 0

    @property
    def average_cost_per_entry(self) -> float:
        if self.total_processed == 0:
            return 0.0
        return self.total_cost / self.total_processed


@dataclass(frozen=True)
class UsageStats:
    """Store-wide aggregate over every processed entry."""

    entries_processed: int = 0
    actions_executed: int = 0
    research_generated: int = 0
    total_cost: float = 0.0
