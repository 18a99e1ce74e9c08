"""ToolService backed by a local HTTP bridge to the system services.

The bridge exposes a small JSON API::

    POST   /reminders        {"title", "notes", "due"}              -> {"id"}
    POST   /events           {"title", "start", "end", "notes", "location"} -> {"id"}
    POST   /contacts         {"first_name", "last_name", "phone", "email", "notes"} -> {"id"}
    POST   /maps             {"query"}
    DELETE /reminders/{id}, /events/{id}, /contacts/{id}

401/403 mean the user has not granted access, 404 that the resource is gone.
"""

import logging
from datetime import datetime
from typing import Any

import httpx

from capto.errors import PermissionDenied, ResourceNotFound, ToolFailure
from capto.tools.base import ToolService

logger = logging.getLogger(__name__)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


class HttpToolService(ToolService):
    """Calls the system bridge over HTTP."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    async def _request(
        self, method: str, path: str, payload: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        try:
            response = await self._client.request(method, path, json=payload)
        except httpx.TimeoutException as e:
            raise ToolFailure(f"{method} {path} timed out") from e
        except httpx.HTTPError as e:
            raise ToolFailure(f"{method} {path} failed: {e}") from e

        if response.status_code in (401, 403):
            raise PermissionDenied(f"{method} {path}: access not granted")
        if response.status_code == 404:
            raise ResourceNotFound(f"{method} {path}: not found")
        if response.is_error:
            raise ToolFailure(f"{method} {path}: HTTP {response.status_code} {response.text}")

        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError as e:
            raise ToolFailure(f"{method} {path}: invalid JSON response") from e
        if not isinstance(data, dict):
            raise ToolFailure(f"{method} {path}: expected a JSON object")
        return data

    async def _create(self, path: str, payload: dict[str, Any]) -> str:
        data = await self._request("POST", path, payload)
        resource_id = data.get("id")
        if not resource_id:
            raise ToolFailure(f"POST {path}: response has no id")
        logger.debug(f"Created {path.strip('/')} {resource_id}")
        return str(resource_id)

    async def create_reminder(
        self, title: str, notes: str | None = None, due: datetime | None = None
    ) -> str:
        return await self._create(
            "/reminders", {"title": title, "notes": notes, "due": _iso(due)}
        )

    async def create_calendar_event(
        self,
        title: str,
        start: datetime,
        end: datetime,
        notes: str | None = None,
        location: str | None = None,
    ) -> str:
        return await self._create(
            "/events",
            {
                "title": title,
                "start": _iso(start),
                "end": _iso(end),
                "notes": notes,
                "location": location,
            },
        )

    async def create_contact(
        self,
        first_name: str,
        last_name: str | None = None,
        phone: str | None = None,
        email: str | None = None,
        notes: str | None = None,
    ) -> str:
        return await self._create(
            "/contacts",
            {
                "first_name": first_name,
                "last_name": last_name,
                "phone": phone,
                "email": email,
                "notes": notes,
            },
        )

    async def open_in_maps(self, query: str) -> None:
        await self._request("POST", "/maps", {"query": query})

    async def delete_reminder(self, reminder_id: str) -> None:
        await self._request("DELETE", f"/reminders/{reminder_id}")

    async def delete_calendar_event(self, event_id: str) -> None:
        await self._request("DELETE", f"/events/{event_id}")

    async def delete_contact(self, contact_id: str) -> None:
        await self._request("DELETE", f"/contacts/{contact_id}")

    async def close(self) -> None:
        await self._client.aclose()
