"""Rule table mapping an entry and its extracted fields to actions.

Pure and deterministic: no I/O, no clock. Actions come out in a stable order
(reminder, contact, calendar, maps) so the ledger is reproducible.
"""

from dataclasses import dataclass, field
from datetime import timedelta

from capto.processing import patterns
from capto.processing.extraction import ExtractedFields
from capto.storage.models import (
    AIAction,
    CalendarPayload,
    ContactPayload,
    EntryType,
    MapsPayload,
    ReminderPayload,
)

ACTION_NOTES = "Created by capto"
CONTACT_NOTES = "Added by capto"
EVENT_DURATION = timedelta(hours=1)

# Short texts with contact data and no verb are treated as raw data
RAW_DATA_MAX_LENGTH = 30


@dataclass(frozen=True)
class ActionPlan:
    """What the pipeline should do for one entry."""

    actions: list[AIAction] = field(default_factory=list)
    research: bool = False


def _title(content: str, fields: ExtractedFields) -> str:
    if fields.action_intent:
        return f"{fields.action_intent} - {content}"
    return content


def _split_name(name: str) -> tuple[str, str | None]:
    first, _, last = name.strip().partition(" ")
    return first, (last.strip() or None)


def is_raw_data(content: str, fields: ExtractedFields) -> bool:
    """True when the entry is bare structured data not worth researching."""
    stripped = content.strip()
    if patterns.is_raw_data(stripped):
        return True
    return (
        len(stripped) < RAW_DATA_MAX_LENGTH
        and fields.has_contact_info
        and fields.action_intent is None
    )


def reminder_action(content: str, fields: ExtractedFields) -> AIAction:
    return AIAction.create(
        ReminderPayload(
            title=_title(content, fields),
            notes=ACTION_NOTES,
            due=fields.resolved_time,
        )
    )


def contact_action(fields: ExtractedFields) -> AIAction | None:
    if not fields.has_contact_info or not fields.name:
        return None
    first_name, last_name = _split_name(fields.name)
    return AIAction.create(
        ContactPayload(
            first_name=first_name,
            last_name=last_name,
            phone=fields.phone,
            email=fields.email,
            notes=CONTACT_NOTES,
        )
    )


def calendar_action(content: str, fields: ExtractedFields) -> AIAction | None:
    if fields.resolved_time is None:
        return None
    return AIAction.create(
        CalendarPayload(
            title=_title(content, fields),
            start=fields.resolved_time,
            end=fields.resolved_time + EVENT_DURATION,
            notes=ACTION_NOTES,
            location=fields.location,
        )
    )


def maps_action(fields: ExtractedFields) -> AIAction | None:
    if not fields.location:
        return None
    return AIAction.create(MapsPayload(query=fields.location))


def decide(entry_type: EntryType, fields: ExtractedFields, content: str) -> ActionPlan:
    """Propose pending actions and whether to generate research."""
    actions: list[AIAction] = []

    if entry_type == EntryType.TODO:
        actions.append(reminder_action(content, fields))

    contact = contact_action(fields)
    if contact is not None:
        actions.append(contact)

    if entry_type == EntryType.TODO:
        calendar = calendar_action(content, fields)
        if calendar is not None:
            actions.append(calendar)

    maps = maps_action(fields)
    if maps is not None:
        actions.append(maps)

    if entry_type == EntryType.TODO:
        research = True
    else:
        research = not is_raw_data(content, fields)

    return ActionPlan(actions=actions, research=research)
