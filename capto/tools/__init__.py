"""System tool services - reminders, calendar, contacts, maps."""

from capto.tools.base import ToolService
from capto.tools.dryrun import DryRunToolService
from capto.tools.http import HttpToolService

__all__ = [
    "DryRunToolService",
    "HttpToolService",
    "ToolService",
]
