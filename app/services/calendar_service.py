"""Google Calendar access.

Bot-created events carry the WhatsApp user id in
``extendedProperties.private.userId`` so a user's appointments can be listed
with a ``privateExtendedProperty`` filter.
"""

import asyncio
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any

from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from app.config import Settings, settings as default_settings
from app.logging_config import get_logger
from app.models import CalendarEvent, EventDetails
from app.services.date_service import local_now

logger = get_logger("calendar_service")

CALENDAR_SCOPES = ["https://www.googleapis.com/auth/calendar.events"]
TOKEN_URI = "https://oauth2.googleapis.com/token"


class CalendarProviderError(Exception):
    """Any failure talking to the calendar provider."""


class CalendarClient(ABC):
    @abstractmethod
    async def create_event(self, details: EventDetails) -> CalendarEvent: ...

    @abstractmethod
    async def list_events_for_user(self, user_id: str, start: datetime, end: datetime) -> list[CalendarEvent]: ...

    @abstractmethod
    async def list_events_in_range(self, start: datetime, end: datetime) -> list[CalendarEvent]: ...

    @abstractmethod
    async def update_event(self, event_id: str, start: datetime, end: datetime) -> CalendarEvent: ...

    @abstractmethod
    async def delete_event(self, event_id: str) -> None: ...

    @abstractmethod
    async def list_upcoming_events(self, max_results: int = 50) -> list[CalendarEvent]: ...


def _parse_when(value: dict) -> datetime:
    raw = value.get("dateTime") or value.get("date")
    return datetime.fromisoformat(raw.replace("Z", "+00:00"))


def event_from_api(item: dict[str, Any]) -> CalendarEvent:
    private = (item.get("extendedProperties") or {}).get("private") or {}
    return CalendarEvent(
        id=item["id"],
        summary=item.get("summary") or "Agendamento",
        start=_parse_when(item.get("start") or {}),
        end=_parse_when(item.get("end") or {}),
        user_id=private.get("userId"),
        description=item.get("description"),
    )


class GoogleCalendarClient(CalendarClient):
    """Google Calendar v3 over the blocking client, run on a small thread pool."""

    _executor = ThreadPoolExecutor(max_workers=2)

    def __init__(self, config: Settings = default_settings):
        self.settings = config
        self.calendar_id = config.google_calendar_id
        self._creds: Credentials | None = None
        self._service = None

    def _credentials(self) -> Credentials:
        if self._creds is not None and self._creds.valid:
            return self._creds
        if not all([self.settings.google_client_id, self.settings.google_client_secret, self.settings.google_refresh_token]):
            raise CalendarProviderError("Missing GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET or GOOGLE_REFRESH_TOKEN")

        self._creds = Credentials(
            token=None,
            refresh_token=self.settings.google_refresh_token,
            client_id=self.settings.google_client_id,
            client_secret=self.settings.google_client_secret,
            token_uri=TOKEN_URI,
            scopes=CALENDAR_SCOPES,
        )
        try:
            self._creds.refresh(Request())
        except Exception as e:
            logger.error(f"Google token refresh failed: {e}")
            raise CalendarProviderError("Failed to refresh Google OAuth token") from e
        self._service = None
        return self._creds

    def _events(self):
        creds = self._credentials()
        if self._service is None:
            self._service = build("calendar", "v3", credentials=creds, cache_discovery=False)
        return self._service.events()

    async def _run(self, func, *args):
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(self._executor, func, *args)
        except CalendarProviderError:
            raise
        except HttpError as e:
            logger.error(f"Google Calendar API error: {e}")
            raise CalendarProviderError(f"Google Calendar API error: {e}") from e
        except Exception as e:
            logger.error(f"Unexpected calendar error: {e}", exc_info=True)
            raise CalendarProviderError("Unexpected calendar error") from e

    def _list_blocking(self, start: datetime, end: datetime, user_id: str | None) -> list[CalendarEvent]:
        params = {
            "calendarId": self.calendar_id,
            "timeMin": start.isoformat(),
            "timeMax": end.isoformat(),
            "singleEvents": True,
            "orderBy": "startTime",
        }
        if user_id:
            params["privateExtendedProperty"] = f"userId={user_id}"
        items = self._events().list(**params).execute().get("items", [])
        return [event_from_api(item) for item in items if (item.get("start") or {}).get("dateTime")]

    def _create_blocking(self, details: EventDetails) -> CalendarEvent:
        body = {
            "summary": details.summary,
            "description": details.description,
            "start": {"dateTime": details.start.isoformat(), "timeZone": details.time_zone},
            "end": {"dateTime": details.end.isoformat(), "timeZone": details.time_zone},
            "extendedProperties": {"private": {"userId": details.user_id}},
        }
        created = self._events().insert(calendarId=self.calendar_id, body=body).execute()
        logger.info("Calendar event created", extra={"context": {"event_id": created.get("id"), "user_id": details.user_id}})
        return event_from_api(created)

    def _update_blocking(self, event_id: str, start: datetime, end: datetime) -> CalendarEvent:
        body = {
            "start": {"dateTime": start.isoformat(), "timeZone": self.settings.timezone_name},
            "end": {"dateTime": end.isoformat(), "timeZone": self.settings.timezone_name},
        }
        updated = self._events().patch(calendarId=self.calendar_id, eventId=event_id, body=body).execute()
        logger.info("Calendar event updated", extra={"context": {"event_id": event_id}})
        return event_from_api(updated)

    def _delete_blocking(self, event_id: str) -> None:
        self._events().delete(calendarId=self.calendar_id, eventId=event_id).execute()
        logger.info("Calendar event deleted", extra={"context": {"event_id": event_id}})

    def _upcoming_blocking(self, now: datetime, max_results: int) -> list[CalendarEvent]:
        items = (
            self._events()
            .list(
                calendarId=self.calendar_id,
                timeMin=now.isoformat(),
                maxResults=max_results,
                singleEvents=True,
                orderBy="startTime",
            )
            .execute()
            .get("items", [])
        )
        return [event_from_api(item) for item in items if (item.get("start") or {}).get("dateTime")]

    async def create_event(self, details: EventDetails) -> CalendarEvent:
        return await self._run(self._create_blocking, details)

    async def list_events_for_user(self, user_id: str, start: datetime, end: datetime) -> list[CalendarEvent]:
        return await self._run(self._list_blocking, start, end, user_id)

    async def list_events_in_range(self, start: datetime, end: datetime) -> list[CalendarEvent]:
        return await self._run(self._list_blocking, start, end, None)

    async def update_event(self, event_id: str, start: datetime, end: datetime) -> CalendarEvent:
        return await self._run(self._update_blocking, event_id, start, end)

    async def delete_event(self, event_id: str) -> None:
        await self._run(self._delete_blocking, event_id)

    async def list_upcoming_events(self, max_results: int = 50) -> list[CalendarEvent]:
        return await self._run(self._upcoming_blocking, local_now(), max_results)
