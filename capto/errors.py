"""Exception hierarchy for capture processing and action execution."""

from __future__ import annotations

PERMISSION_REMEDIATION = (
    "Grant access in System Settings > Privacy & Security, then retry the action."
)


class CaptoError(Exception):
    """Base class for all capto exceptions."""


# ============== Tool errors ==============


class ToolError(CaptoError):
    """Raised by a ToolService when a system operation does not complete."""


class PermissionDenied(ToolError):
    """The user has not granted access to the system service."""

    remediation = PERMISSION_REMEDIATION


class ResourceNotFound(ToolError):
    """The external resource (reminder, event, contact, place) does not exist."""


class ToolFailure(ToolError):
    """Generic tool failure: transport error, timeout, bad response."""


# ============== Pipeline errors ==============


class ExtractionFailure(CaptoError):
    """Structured extraction failed; callers fall back to local patterns."""


class ActionExecutionFailure(CaptoError):
    """An action could not be executed."""

    def __init__(self, action_id: str, cause: Exception):
        super().__init__(f"Action {action_id} failed: {cause}")
        self.action_id = action_id
        self.cause = cause


class ReversalFailure(CaptoError):
    """An executed action could not be undone; it stays executed."""


class IllegalTransition(CaptoError):
    """An action status change that the ledger does not allow."""

    def __init__(self, action_id: str, current: str, target: str):
        super().__init__(f"Action {action_id}: cannot go from {current} to {target}")
        self.action_id = action_id
        self.current = current
        self.target = target


class EntryNotFound(CaptoError):
    """No entry exists with the given id."""


class ActionNotFound(CaptoError):
    """The entry has no action with the given id."""


class EntryBusy(CaptoError):
    """An orchestration run is already active for this entry."""


__all__ = [
    "PERMISSION_REMEDIATION",
    "ActionExecutionFailure",
    "ActionNotFound",
    "CaptoError",
    "EntryBusy",
    "EntryNotFound",
    "ExtractionFailure",
    "IllegalTransition",
    "PermissionDenied",
    "ResourceNotFound",
    "ReversalFailure",
    "ToolError",
    "ToolFailure",
]
