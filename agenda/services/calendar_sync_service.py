"""Google Calendar client for mirroring approved events.

A thin retrying wrapper over the Calendar v3 REST API. Only rate limiting,
5xx responses and transport errors are retried; other client errors surface
immediately as CalendarSyncError.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Awaitable, Callable, Protocol

import anyio
import httpx

from agenda.core.config import settings
from agenda.db.enums import EventType
from agenda.schemas.events import ensure_utc
from agenda.services.http_service import request_with_retries

logger = logging.getLogger(__name__)

GOOGLE_CALENDAR_API = "https://www.googleapis.com/calendar/v3"
CALENDAR_SCOPES = ["https://www.googleapis.com/auth/calendar"]

# Google Calendar color ids per event type
EVENT_TYPE_COLORS: dict[str, str] = {
    EventType.EVENTO.value: "8",  # Graphite
    EventType.ACAO_PONTUAL.value: "5",  # Banana
    EventType.REUNIAO.value: "9",  # Blueberry
    EventType.VISITA.value: "10",  # Basil
    EventType.FERIAS.value: "11",  # Tomato
    EventType.FOLGA.value: "3",  # Grape
    EventType.LICENCA.value: "4",  # Flamingo
    EventType.OUTROS.value: "8",
}
DEFAULT_COLOR_ID = "8"


class CalendarSyncError(Exception):
    """Raised when the calendar provider rejects or fails a request."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class CalendarEventLike(Protocol):
    title: str
    description: str | None
    start_date: datetime
    end_date: datetime
    is_all_day: bool
    event_type: str


TokenProvider = Callable[[], Awaitable[str]]


class ServiceAccountTokenProvider:
    """
    Issues OAuth access tokens for a Google service account.

    google-auth refreshes synchronously, so the refresh runs in a worker
    thread. The token is reused until google-auth reports it invalid.
    """

    def __init__(self, client_email: str, private_key: str, token_uri: str | None = None):
        from google.oauth2 import service_account

        info = {
            "type": "service_account",
            "client_email": client_email,
            "private_key": private_key,
            "token_uri": token_uri or "https://oauth2.googleapis.com/token",
        }
        self._credentials = service_account.Credentials.from_service_account_info(
            info, scopes=CALENDAR_SCOPES
        )
        self._lock = anyio.Lock()

    def _refresh(self) -> None:
        from google.auth.transport.requests import Request

        self._credentials.refresh(Request())

    async def __call__(self) -> str:
        async with self._lock:
            if not self._credentials.valid:
                await anyio.to_thread.run_sync(self._refresh)
            return self._credentials.token


def color_for(event_type: str) -> str:
    return EVENT_TYPE_COLORS.get(getattr(event_type, "value", event_type), DEFAULT_COLOR_ID)


def _boundary(value: datetime, is_all_day: bool) -> dict:
    value = ensure_utc(value)
    if is_all_day:
        return {"date": value.date().isoformat()}
    return {"dateTime": value.isoformat().replace("+00:00", "Z")}


def build_event_body(event: CalendarEventLike) -> dict:
    """Request body shared by insert and update."""
    return {
        "summary": event.title,
        "description": event.description or "",
        "start": _boundary(event.start_date, event.is_all_day),
        "end": _boundary(event.end_date, event.is_all_day),
        "colorId": color_for(event.event_type),
    }


class CalendarSyncClient:
    """Create/update/delete events and query busy intervals on one calendar."""

    def __init__(
        self,
        *,
        calendar_id: str,
        token_provider: TokenProvider,
        transport: httpx.AsyncBaseTransport | None = None,
        base_url: str = GOOGLE_CALENDAR_API,
        max_attempts: int = 3,
        base_delay: float = 0.5,
        timeout: float = 20.0,
        jitter: bool = False,
    ):
        self.calendar_id = calendar_id
        self._token_provider = token_provider
        self._transport = transport
        self._base_url = base_url.rstrip("/")
        self._max_attempts = max_attempts
        self._base_delay = base_delay
        self._timeout = timeout
        self._jitter = jitter

    @property
    def _events_url(self) -> str:
        return f"{self._base_url}/calendars/{self.calendar_id}/events"

    async def _request(self, method: str, url: str, *, json: dict | None = None) -> httpx.Response:
        token = await self._token_provider()
        headers = {"Authorization": f"Bearer {token}"}
        async with httpx.AsyncClient(transport=self._transport, timeout=self._timeout) as client:
            return await request_with_retries(
                lambda: client.request(method, url, headers=headers, json=json),
                max_attempts=self._max_attempts,
                base_delay=self._base_delay,
                # doubling without a cap inside the attempt budget
                max_delay=self._base_delay * (2 ** self._max_attempts),
                jitter=self._jitter,
            )

    @staticmethod
    def _raise_for_status(response: httpx.Response, action: str) -> None:
        if response.status_code >= 400:
            raise CalendarSyncError(
                f"Calendar {action} failed with status {response.status_code}",
                status_code=response.status_code,
            )

    async def create(self, event: CalendarEventLike) -> str:
        """Insert an event and return the provider's event id."""
        try:
            response = await self._request("POST", self._events_url, json=build_event_body(event))
        except httpx.HTTPError as exc:
            raise CalendarSyncError(f"Calendar create failed: {exc}") from exc
        self._raise_for_status(response, "create")
        external_id = response.json().get("id")
        if not external_id:
            raise CalendarSyncError("Calendar API did not return an event id")
        return external_id

    async def update(self, external_id: str, event: CalendarEventLike) -> None:
        try:
            response = await self._request(
                "PUT", f"{self._events_url}/{external_id}", json=build_event_body(event)
            )
        except httpx.HTTPError as exc:
            raise CalendarSyncError(f"Calendar update failed: {exc}") from exc
        self._raise_for_status(response, "update")

    async def delete(self, external_id: str) -> None:
        """Delete an event. Already-gone events (404/410) count as deleted."""
        try:
            response = await self._request("DELETE", f"{self._events_url}/{external_id}")
        except httpx.HTTPError as exc:
            raise CalendarSyncError(f"Calendar delete failed: {exc}") from exc
        if response.status_code in (404, 410):
            logger.info("Calendar event %s already deleted", external_id)
            return
        self._raise_for_status(response, "delete")

    async def query_busy(self, start: datetime, end: datetime) -> bool:
        """
        Return True if the calendar has anything booked in [start, end].

        Fails open: any error is logged and reported as not busy.
        """
        body = {
            "timeMin": ensure_utc(start).isoformat(),
            "timeMax": ensure_utc(end).isoformat(),
            "items": [{"id": self.calendar_id}],
        }
        try:
            response = await self._request("POST", f"{self._base_url}/freeBusy", json=body)
            if response.status_code != 200:
                logger.warning("Calendar freebusy returned %s", response.status_code)
                return False
            busy = response.json().get("calendars", {}).get(self.calendar_id, {}).get("busy") or []
            return len(busy) > 0
        except Exception:
            logger.warning("Calendar availability check failed", exc_info=True)
            return False


def build_calendar_client() -> CalendarSyncClient | None:
    """Client from settings, or None when no service account is configured."""
    if not settings.calendar_configured:
        return None
    token_provider = ServiceAccountTokenProvider(
        client_email=settings.GOOGLE_CLIENT_EMAIL,
        private_key=settings.google_private_key,
        token_uri=settings.GOOGLE_TOKEN_URI,
    )
    return CalendarSyncClient(
        calendar_id=settings.GOOGLE_CALENDAR_ID,
        token_provider=token_provider,
        max_attempts=settings.CALENDAR_MAX_ATTEMPTS,
        base_delay=settings.CALENDAR_RETRY_BASE_DELAY,
        timeout=settings.CALENDAR_TIMEOUT_SECONDS,
    )
