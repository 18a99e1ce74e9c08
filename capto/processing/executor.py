"""Execute and reverse actions against a ToolService, recording each step."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from capto.config import DEFAULT_TOOL_TIMEOUT
from capto.errors import (
    ActionExecutionFailure,
    CaptoError,
    IllegalTransition,
    PermissionDenied,
    ReversalFailure,
    ToolError,
    ToolFailure,
)
from capto.processing.ledger import ActionLedger
from capto.storage.models import (
    ActionStatus,
    AIAction,
    CalendarPayload,
    CalendarReverse,
    ContactPayload,
    ContactReverse,
    FailureKind,
    MapsPayload,
    ReminderPayload,
    ReminderReverse,
    ReverseData,
)
from capto.tools.base import ToolService

if TYPE_CHECKING:
    from capto.processing.pipeline import CancelToken

logger = logging.getLogger(__name__)

# Already done, or possibly half done by a crashed run
_NEVER_RERUN = (ActionStatus.EXECUTED, ActionStatus.REVERSED, ActionStatus.EXECUTING)


@dataclass(frozen=True)
class ExecutionOutcome:
    """Result of one execute or reverse call."""

    action: AIAction
    executed: bool = False
    reversed: bool = False
    skipped: bool = False
    error_kind: FailureKind | None = None
    error: CaptoError | None = None
    remediation: str | None = None

    @property
    def ok(self) -> bool:
        return self.error_kind is None

    @property
    def message(self) -> str | None:
        return str(self.error) if self.error is not None else None


class ActionExecutor:
    """Runs one action at a time through the ledger's state machine.

    The caller holds the entry lock. Each status change is persisted before
    the next step, so a crash leaves the action visibly ``executing``.
    """

    def __init__(
        self,
        ledger: ActionLedger,
        tools: ToolService,
        timeout: float = DEFAULT_TOOL_TIMEOUT,
    ):
        self.ledger = ledger
        self.tools = tools
        self.timeout = timeout

    async def execute(
        self, entry_id: str, action: AIAction, *, retry: bool = False
    ) -> ExecutionOutcome:
        """Execute an action once.

        Executed, reversed and executing actions are skipped. A failed action
        runs again only when ``retry`` is set by an explicit user request.
        """
        if action.status in _NEVER_RERUN:
            logger.debug(f"Skipping action {action.id}: already {action.status.value}")
            return ExecutionOutcome(action=action, skipped=True)
        if action.status == ActionStatus.FAILED and not retry:
            logger.debug(f"Skipping failed action {action.id}: no retry requested")
            return ExecutionOutcome(action=action, skipped=True, error_kind=action.error_kind)

        running = action.begin()
        await self.ledger.replace_action(entry_id, running)

        try:
            reverse_data = await asyncio.wait_for(self._perform(running), self.timeout)
        except TimeoutError:
            return await self._failed(
                entry_id, running, ToolFailure(f"timed out after {self.timeout}s")
            )
        except ToolError as e:
            return await self._failed(entry_id, running, e)
        except Exception as e:
            logger.error(f"Unexpected error executing action {running.id}: {e}")
            return await self._failed(entry_id, running, ToolFailure(str(e)))

        done = running.succeed(reverse_data)
        await self.ledger.replace_action(entry_id, done)
        logger.info(f"Executed {done.type.value} action {done.id} for entry {entry_id}")
        return ExecutionOutcome(action=done, executed=True)

    async def execute_all(
        self,
        entry_id: str,
        actions: list[AIAction],
        cancel: CancelToken | None = None,
    ) -> list[ExecutionOutcome]:
        """Execute actions strictly in order; a failure does not stop the rest."""
        outcomes = []
        for action in actions:
            if cancel is not None:
                cancel.raise_if_cancelled()
            outcomes.append(await self.execute(entry_id, action))
        return outcomes

    async def reverse(self, entry_id: str, action: AIAction) -> ExecutionOutcome:
        """Undo an executed action.

        Reversing a reversed action is a no-op. If the inverse operation fails
        the action stays ``executed`` and the failure is returned.
        """
        if action.status == ActionStatus.REVERSED:
            return ExecutionOutcome(action=action, skipped=True)
        if action.status != ActionStatus.EXECUTED:
            raise IllegalTransition(action.id, action.status.value, ActionStatus.REVERSED.value)
        if not action.reversible or action.reverse_data is None:
            raise ReversalFailure(f"{action.type.value} action {action.id} cannot be reversed")

        try:
            await asyncio.wait_for(self._undo(action.reverse_data), self.timeout)
        except (TimeoutError, ToolError) as e:
            detail = str(e) or "timed out"
            failure = ReversalFailure(f"Could not reverse action {action.id}: {detail}")
            logger.warning(str(failure))
            denied = isinstance(e, PermissionDenied)
            return ExecutionOutcome(
                action=action,
                error_kind=FailureKind.PERMISSION_DENIED if denied else FailureKind.FAILED,
                error=failure,
                remediation=PermissionDenied.remediation if denied else None,
            )

        undone = action.mark_reversed()
        await self.ledger.replace_action(entry_id, undone)
        logger.info(f"Reversed {undone.type.value} action {undone.id} for entry {entry_id}")
        return ExecutionOutcome(action=undone, reversed=True)

    async def _failed(
        self, entry_id: str, running: AIAction, cause: ToolError
    ) -> ExecutionOutcome:
        if isinstance(cause, PermissionDenied):
            kind = FailureKind.PERMISSION_DENIED
            error: CaptoError = cause
            remediation: str | None = cause.remediation
            logger.warning(f"Permission denied for {running.type.value} action {running.id}")
        else:
            kind = FailureKind.FAILED
            error = ActionExecutionFailure(running.id, cause)
            remediation = None
            logger.warning(str(error))

        failed = running.fail(kind, str(cause))
        await self.ledger.replace_action(entry_id, failed)
        return ExecutionOutcome(
            action=failed, error_kind=kind, error=error, remediation=remediation
        )

    async def _perform(self, action: AIAction) -> ReverseData | None:
        data = action.data
        if isinstance(data, ReminderPayload):
            reminder_id = await self.tools.create_reminder(data.title, data.notes, data.due)
            return ReminderReverse(reminder_id=reminder_id)
        if isinstance(data, CalendarPayload):
            event_id = await self.tools.create_calendar_event(
                data.title, data.start, data.end, data.notes, data.location
            )
            return CalendarReverse(event_id=event_id, start=data.start, end=data.end)
        if isinstance(data, ContactPayload):
            contact_id = await self.tools.create_contact(
                data.first_name, data.last_name, data.phone, data.email, data.notes
            )
            return ContactReverse(contact_id=contact_id)
        if isinstance(data, MapsPayload):
            await self.tools.open_in_maps(data.query)
            return None
        raise ToolFailure(f"No tool for action type {action.type.value}")

    async def _undo(self, reverse_data: ReverseData) -> None:
        if isinstance(reverse_data, ReminderReverse):
            await self.tools.delete_reminder(reverse_data.reminder_id)
        elif isinstance(reverse_data, CalendarReverse):
            await self.tools.delete_calendar_event(reverse_data.event_id)
        elif isinstance(reverse_data, ContactReverse):
            await self.tools.delete_contact(reverse_data.contact_id)
