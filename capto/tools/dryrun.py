"""ToolService that only logs, for running without a system bridge."""

import logging
from datetime import datetime
from uuid import uuid4

from capto.errors import ResourceNotFound
from capto.tools.base import ToolService

logger = logging.getLogger(__name__)


class DryRunToolService(ToolService):
    """Pretends to create resources.

    Ids carry their kind as a prefix, so a later process can still delete
    what an earlier one created.
    """

    def __init__(self) -> None:
        self.created: dict[str, tuple[str, str]] = {}
        self.maps_queries: list[str] = []

    def _remember(self, kind: str, title: str) -> str:
        resource_id = f"{kind}-{uuid4().hex[:12]}"
        self.created[resource_id] = (kind, title)
        logger.info(f"[dry-run] created {kind} {resource_id}: {title[:60]}")
        return resource_id

    def _forget(self, kind: str, resource_id: str) -> None:
        if not resource_id.startswith(f"{kind}-"):
            raise ResourceNotFound(f"{kind} {resource_id} does not exist")
        self.created.pop(resource_id, None)
        logger.info(f"[dry-run] deleted {kind} {resource_id}")

    async def create_reminder(
        self, title: str, notes: str | None = None, due: datetime | None = None
    ) -> str:
        return self._remember("reminder", title)

    async def create_calendar_event(
        self,
        title: str,
        start: datetime,
        end: datetime,
        notes: str | None = None,
        location: str | None = None,
    ) -> str:
        return self._remember("event", title)

    async def create_contact(
        self,
        first_name: str,
        last_name: str | None = None,
        phone: str | None = None,
        email: str | None = None,
        notes: str | None = None,
    ) -> str:
        return self._remember("contact", " ".join(filter(None, [first_name, last_name])))

    async def open_in_maps(self, query: str) -> None:
        self.maps_queries.append(query)
        logger.info(f"[dry-run] open maps: {query}")

    async def delete_reminder(self, reminder_id: str) -> None:
        self._forget("reminder", reminder_id)

    async def delete_calendar_event(self, event_id: str) -> None:
        self._forget("event", event_id)

    async def delete_contact(self, contact_id: str) -> None:
        self._forget("contact", contact_id)
