"""
External calendar provider clients.

The sync queue only talks to the abstract CalendarClient. GoogleCalendarClient
speaks the Calendar v3 REST API over httpx and refreshes OAuth tokens stored
on the tenant's CalendarIntegration row.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional
from urllib.parse import quote

import httpx
import structlog
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import ExternalProviderError
from app.models.calendar_integration import CalendarIntegration
from app.utils.time import as_utc, utc_now

logger = structlog.get_logger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_CALENDAR_API = "https://www.googleapis.com/calendar/v3"

# Refresh tokens this long before they actually expire
TOKEN_REFRESH_MARGIN = timedelta(minutes=5)


class CalendarEvent(BaseModel):
    summary: str
    description: Optional[str] = None
    start: datetime  # local wall-clock with tzinfo
    end: datetime
    timezone: str

    def to_google(self) -> Dict[str, Any]:
        return {
            "summary": self.summary,
            "description": self.description or "",
            "start": {"dateTime": self.start.isoformat(), "timeZone": self.timezone},
            "end": {"dateTime": self.end.isoformat(), "timeZone": self.timezone},
        }


class CalendarClient(ABC):
    """Minimal event CRUD against a provider-assigned calendar id."""

    provider = "calendar"

    @abstractmethod
    async def create_event(self, calendar_id: str, event: CalendarEvent) -> str:
        """Create an event and return the provider's event id."""

    @abstractmethod
    async def update_event(
        self, calendar_id: str, event_id: str, event: CalendarEvent
    ) -> None:
        pass

    @abstractmethod
    async def delete_event(self, calendar_id: str, event_id: str) -> None:
        """Delete an event. An event that is already gone is not an error."""

    async def aclose(self) -> None:
        pass


class GoogleCalendarClient(CalendarClient):
    provider = "google"

    def __init__(
        self,
        db: AsyncSession,
        integration: Optional[CalendarIntegration],
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = db
        self.integration = integration
        self.clock = clock
        self._owns_http = http_client is None
        self.http = http_client or httpx.AsyncClient(
            timeout=settings.CALENDAR_PROVIDER_TIMEOUT_SECONDS
        )

    async def aclose(self) -> None:
        if self._owns_http:
            await self.http.aclose()

    def _error(self, message: str, status_code: Optional[int] = None):
        return ExternalProviderError(self.provider, message, status_code=status_code)

    async def _refresh_access_token(self) -> str:
        integration = self.integration
        try:
            response = await self.http.post(
                GOOGLE_TOKEN_URL,
                data={
                    "client_id": settings.GOOGLE_CLIENT_ID or "",
                    "client_secret": settings.GOOGLE_CLIENT_SECRET or "",
                    "refresh_token": integration.refresh_token,
                    "grant_type": "refresh_token",
                },
            )
        except httpx.HTTPError as e:
            raise self._error(f"Token refresh request failed: {e}")

        if response.status_code != 200:
            raise self._error(
                f"Token refresh failed: {response.text}", status_code=response.status_code
            )

        tokens = response.json()
        access_token = tokens.get("access_token")
        if not access_token:
            raise self._error("No access token in refresh response")

        integration.access_token = access_token
        integration.token_expires_at = self.clock() + timedelta(
            seconds=tokens.get("expires_in", 3600)
        )
        await self.db.commit()

        logger.info("Google Calendar token refreshed", tenant_id=integration.tenant_id)
        return access_token

    async def _access_token(self) -> str:
        integration = self.integration
        if integration is None or not integration.is_connected:
            raise self._error("Calendar integration is not connected")

        expires_at = as_utc(integration.token_expires_at)
        needs_refresh = not integration.access_token or (
            expires_at is not None and expires_at <= self.clock() + TOKEN_REFRESH_MARGIN
        )
        if not needs_refresh:
            return integration.access_token
        if not integration.refresh_token:
            raise self._error("Access token expired and no refresh token is stored")
        return await self._refresh_access_token()

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        token = await self._access_token()
        try:
            return await self.http.request(
                method,
                f"{GOOGLE_CALENDAR_API}{path}",
                headers={"Authorization": f"Bearer {token}"},
                **kwargs,
            )
        except httpx.HTTPError as e:
            raise self._error(f"{method} {path} failed: {e}")

    @staticmethod
    def _events_path(calendar_id: str, event_id: Optional[str] = None) -> str:
        path = f"/calendars/{quote(calendar_id, safe='')}/events"
        if event_id:
            path += f"/{quote(event_id, safe='')}"
        return path

    async def create_event(self, calendar_id: str, event: CalendarEvent) -> str:
        response = await self._request(
            "POST", self._events_path(calendar_id), json=event.to_google()
        )
        if response.status_code not in (200, 201):
            raise self._error(
                f"Failed to create event: {response.text}",
                status_code=response.status_code,
            )
        event_id = response.json().get("id")
        if not event_id:
            raise self._error("Provider returned no event id")
        return event_id

    async def update_event(
        self, calendar_id: str, event_id: str, event: CalendarEvent
    ) -> None:
        response = await self._request(
            "PUT", self._events_path(calendar_id, event_id), json=event.to_google()
        )
        if response.status_code != 200:
            raise self._error(
                f"Failed to update event {event_id}: {response.text}",
                status_code=response.status_code,
            )

    async def delete_event(self, calendar_id: str, event_id: str) -> None:
        response = await self._request("DELETE", self._events_path(calendar_id, event_id))
        if response.status_code in (404, 410):
            logger.info("Calendar event already deleted", event_id=event_id)
            return
        if response.status_code not in (200, 204):
            raise self._error(
                f"Failed to delete event {event_id}: {response.text}",
                status_code=response.status_code,
            )


async def google_client_factory(db: AsyncSession, tenant_id: int) -> CalendarClient:
    """Build a Google client for the tenant's stored integration (if any)."""
    result = await db.execute(
        select(CalendarIntegration).where(CalendarIntegration.tenant_id == tenant_id)
    )
    return GoogleCalendarClient(db, result.scalar_one_or_none())
