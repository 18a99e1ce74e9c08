"""Tests for the entry and action ledger data model."""

from datetime import UTC, datetime, timedelta

import pytest

from capto.errors import IllegalTransition
from capto.storage import (
    ActionStatus,
    ActionType,
    AIAction,
    AIMetadata,
    CalendarPayload,
    CalendarReverse,
    ContactPayload,
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
)

START = datetime(2026, 3, 3, 15, 0, tzinfo=UTC)


def calendar_action() -> AIAction:
    return AIAction.create(
        CalendarPayload(title="Dentist", start=START, end=START + timedelta(hours=1))
    )


class TestActionTransitions:
    """Tests for the action status state machine."""

    def test_new_action_is_pending(self):
        action = calendar_action()

        assert action.status == ActionStatus.PENDING
        assert action.type == ActionType.CALENDAR
        assert action.reversible

    def test_maps_actions_are_not_reversible(self):
        assert not AIAction.create(MapsPayload(query="Cafe Roma")).reversible

    def test_execute_then_reverse(self):
        action = calendar_action()
        reverse = CalendarReverse(event_id="evt-1", start=START, end=START + timedelta(hours=1))

        done = action.begin().succeed(reverse)
        assert done.status == ActionStatus.EXECUTED
        assert done.reverse_data == reverse
        assert done.executed_at is not None
        assert done.id == action.id

        undone = done.mark_reversed()
        assert undone.status == ActionStatus.REVERSED

    def test_transitions_return_new_values(self):
        """Test the previous action value is untouched by a transition."""
        action = calendar_action()
        action.begin()

        assert action.status == ActionStatus.PENDING

    def test_failure_and_retry(self):
        action = calendar_action().begin().fail(FailureKind.PERMISSION_DENIED, "no access")

        assert action.status == ActionStatus.FAILED
        assert action.error == "no access"
        assert action.error_kind == FailureKind.PERMISSION_DENIED

        retried = action.begin()
        assert retried.status == ActionStatus.EXECUTING
        assert retried.error is None
        assert retried.error_kind is None

    def test_reversible_success_needs_reverse_data(self):
        with pytest.raises(ValueError):
            calendar_action().begin().succeed(None)

    def test_reverse_data_must_match_type(self):
        with pytest.raises(ValueError):
            calendar_action().begin().succeed(ReminderReverse(reminder_id="r-1"))

    @pytest.mark.parametrize(
        "make, step",
        [
            (lambda: calendar_action(), lambda a: a.mark_reversed()),
            (lambda: calendar_action(), lambda a: a.fail(FailureKind.FAILED, "x")),
            (
                lambda: AIAction.create(MapsPayload(query="x")).begin().succeed(None),
                lambda a: a.begin(),
            ),
        ],
    )
    def test_illegal_transitions(self, make, step):
        """Test edges outside the state machine raise IllegalTransition."""
        with pytest.raises(IllegalTransition):
            step(make())

    def test_reversed_is_terminal(self):
        reversed_action = (
            AIAction.create(ReminderPayload(title="Buy milk"))
            .begin()
            .succeed(ReminderReverse(reminder_id="r-1"))
            .mark_reversed()
        )

        with pytest.raises(IllegalTransition):
            reversed_action.begin()
        with pytest.raises(IllegalTransition):
            reversed_action.mark_reversed()


class TestSerialization:
    """Tests for the JSON form stored in the database."""

    def test_metadata_round_trip(self):
        executed = (
            AIAction.create(ReminderPayload(title="Call Anna", notes="note", due=START))
            .begin()
            .succeed(ReminderReverse(reminder_id="r-42"))
        )
        failed = (
            AIAction.create(ContactPayload(first_name="Anna", phone="555-123-4567"))
            .begin()
            .fail(FailureKind.PERMISSION_DENIED, "denied")
        )
        metadata = AIMetadata(
            actions=[executed, failed, AIAction.create(MapsPayload(query="Main St"))],
            research_results=ResearchResults(content="# Notes", cost=0.002),
            processing_meta=ProcessingMeta(total_cost=0.005, processing_time_ms=1200),
        )

        restored = AIMetadata.from_dict(metadata.to_dict())

        assert restored == metadata
        assert restored.actions[0].reverse_data == ReminderReverse(reminder_id="r-42")
        assert restored.actions[1].error_kind == FailureKind.PERMISSION_DENIED
        assert not restored.actions[2].reversible


class TestAIMetadata:
    """Tests for ledger helpers on the metadata object."""

    def test_replace_action_keeps_order(self):
        first = calendar_action()
        second = AIAction.create(MapsPayload(query="Cafe"))
        metadata = AIMetadata(actions=[first, second])

        metadata.replace_action(first.begin())

        assert [a.id for a in metadata.actions] == [first.id, second.id]
        assert metadata.actions[0].status == ActionStatus.EXECUTING

    def test_replace_action_unknown_id(self):
        metadata = AIMetadata(actions=[calendar_action()])

        with pytest.raises(KeyError):
            metadata.replace_action(AIAction.create(MapsPayload(query="x")))

    def test_replace_action_cannot_change_type(self):
        action = calendar_action()
        metadata = AIMetadata(actions=[action])
        impostor = AIAction(data=MapsPayload(query="x"), id=action.id)

        with pytest.raises(ValueError):
            metadata.replace_action(impostor)

    def test_status_views(self):
        pending = calendar_action()
        executed = (
            AIAction.create(ReminderPayload(title="x"))
            .begin()
            .succeed(ReminderReverse(reminder_id="r"))
        )
        metadata = AIMetadata(actions=[pending, executed])

        assert metadata.pending_actions == [pending]
        assert metadata.executed_actions == [executed]
        assert metadata.find_action(executed.id) == executed
        assert metadata.find_action("missing") is None

    def test_total_cost_counts_research_once(self):
        metadata = AIMetadata(
            research_results=ResearchResults(content="x", cost=0.002),
            processing_meta=ProcessingMeta(total_cost=0.005),
        )
        assert metadata.total_cost == pytest.approx(0.005)

        regenerated_only = AIMetadata(research_results=ResearchResults(content="x", cost=0.002))
        assert regenerated_only.total_cost == pytest.approx(0.002)


class TestEntry:
    """Tests for entry helpers."""

    def test_defaults(self):
        entry = Entry(content="Buy milk", trigger_used="///")

        assert entry.type == EntryType.TODO
        assert entry.status == EntryStatus.OPEN
        assert entry.needs_processing
        assert entry.id

    def test_only_todos_complete(self):
        todo = Entry(type=EntryType.TODO, content="x")
        piece = Entry(type=EntryType.PIECE, content="x")

        todo.mark_done()
        piece.mark_done()

        assert todo.status == EntryStatus.DONE
        assert piece.status == EntryStatus.OPEN

        todo.mark_open()
        assert todo.status == EntryStatus.OPEN


class TestProcessingStats:
    def test_average_cost(self):
        assert ProcessingStats().average_cost_per_entry == 0.0
        assert ProcessingStats(total_processed=4, total_cost=0.02).average_cost_per_entry == (
            pytest.approx(0.005)
        )
