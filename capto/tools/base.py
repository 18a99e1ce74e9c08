"""ToolService: the system operations actions are executed against."""

from abc import ABC, abstractmethod
from datetime import datetime


class ToolService(ABC):
    """Creates and deletes reminders, calendar events and contacts.

    Every operation may raise PermissionDenied, ResourceNotFound or
    ToolFailure (see capto.errors). Create calls return the external id.
    """

    @abstractmethod
    async def create_reminder(
        self, title: str, notes: str | None = None, due: datetime | None = None
    ) -> str: ...

    @abstractmethod
    async def create_calendar_event(
        self,
        title: str,
        start: datetime,
        end: datetime,
        notes: str | None = None,
        location: str | None = None,
    ) -> str: ...

    @abstractmethod
    async def create_contact(
        self,
        first_name: str,
        last_name: str | None = None,
        phone: str | None = None,
        email: str | None = None,
        notes: str | None = None,
    ) -> str: ...

    @abstractmethod
    async def open_in_maps(self, query: str) -> None: ...

    @abstractmethod
    async def delete_reminder(self, reminder_id: str) -> None: ...

    @abstractmethod
    async def delete_calendar_event(self, event_id: str) -> None: ...

    @abstractmethod
    async def delete_contact(self, contact_id: str) -> None: ...

    async def close(self) -> None:
        """Release any held resources."""
        return None
