# calendar.py — Google Calendar (read-only)
#
# A TokenProvider owns the google-auth Credentials built from the stored
# refresh token. It refreshes them when the access token is within
# REFRESH_MARGIN seconds of expiry, judged against an injectable clock.
# Events come from the Calendar v3 discovery client.

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable
from zoneinfo import ZoneInfo

from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from foreman.engine.config import (
    GOOGLE_CLIENT_ID,
    GOOGLE_CLIENT_SECRET,
    GOOGLE_REFRESH_TOKEN,
    TIMEZONE,
)

logger = logging.getLogger(__name__)

TOKEN_URI = "https://oauth2.googleapis.com/token"
SCOPES = ["https://www.googleapis.com/auth/calendar.readonly"]
REFRESH_MARGIN = 60  # seconds


class CalendarError(RuntimeError):
    pass


class TokenProvider:
    """Hands out a valid OAuth access token, refreshing it on demand."""

    def __init__(
        self,
        client_id: str = GOOGLE_CLIENT_ID,
        client_secret: str = GOOGLE_CLIENT_SECRET,
        refresh_token: str = GOOGLE_REFRESH_TOKEN,
        clock: Callable[[], float] = time.time,
        credentials: Credentials | None = None,
        request_factory: Callable[[], Any] = Request,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.refresh_token = refresh_token
        self.clock = clock
        self.credentials = credentials or Credentials(
            token=None,
            refresh_token=refresh_token,
            token_uri=TOKEN_URI,
            client_id=client_id,
            client_secret=client_secret,
            scopes=SCOPES,
        )
        self._request_factory = request_factory
        self._lock = threading.Lock()

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret and self.refresh_token)

    def _expires_at(self) -> float:
        expiry = self.credentials.expiry
        if expiry is None:
            return 0.0
        # google-auth keeps expiry as naive UTC
        if expiry.tzinfo is None:
            expiry = expiry.replace(tzinfo=timezone.utc)
        return expiry.timestamp()

    def get_valid_token(self) -> str:
        with self._lock:
            if self.credentials.token and self.clock() < self._expires_at() - REFRESH_MARGIN:
                return self.credentials.token
            try:
                self.credentials.refresh(self._request_factory())
            except GoogleAuthError as exc:
                raise CalendarError(f"Failed to refresh Google token: {exc}") from exc
            if not self.credentials.token:
                raise CalendarError("Token refresh returned no access token")
            logger.debug("Refreshed Google access token")
            return self.credentials.token


def _normalize(event: dict[str, Any]) -> dict[str, Any]:
    start = event.get("start") or {}
    end = event.get("end") or {}
    return {
        "id": event.get("id", ""),
        "summary": event.get("summary") or "No title",
        "start": start.get("dateTime") or start.get("date") or "",
        "end": end.get("dateTime") or end.get("date") or "",
        "location": event.get("location"),
    }


class CalendarClient:

    def __init__(self, tokens: TokenProvider | None = None, tz: str = TIMEZONE, service: Any = None):
        self.tokens = tokens or TokenProvider()
        self.tz = ZoneInfo(tz)
        self._service = service

    def _get_service(self) -> Any:
        if self._service is None:
            self._service = build(
                "calendar", "v3", credentials=self.tokens.credentials, cache_discovery=False
            )
        return self._service

    def _events(self, **params: Any) -> list[dict[str, Any]]:
        self.tokens.get_valid_token()
        try:
            response = self._get_service().events().list(
                calendarId="primary",
                singleEvents=True,
                orderBy="startTime",
                **params,
            ).execute()
        except HttpError as exc:
            raise CalendarError(f"Google Calendar API error: {exc}") from exc
        return [_normalize(e) for e in response.get("items", [])]

    def get_todays_events(self, now: datetime | None = None) -> list[dict[str, Any]]:
        now = (now or datetime.now(self.tz)).astimezone(self.tz)
        start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        end = start + timedelta(days=1) - timedelta(microseconds=1)
        return self._events(timeMin=start.isoformat(), timeMax=end.isoformat())

    def get_upcoming_events(self, days: int = 7, now: datetime | None = None) -> list[dict[str, Any]]:
        now = (now or datetime.now(self.tz)).astimezone(self.tz)
        return self._events(
            timeMin=now.isoformat(),
            timeMax=(now + timedelta(days=days)).isoformat(),
            maxResults=50,
        )


def format_event_time(start: str, tz: str = TIMEZONE) -> str:
    """'2:30 PM' for timed events, 'All day' for date-only ones."""
    if not start or "T" not in start:
        return "All day"
    try:
        dt = datetime.fromisoformat(start.replace("Z", "+00:00"))
    except ValueError:
        return start
    if dt.tzinfo is not None:
        dt = dt.astimezone(ZoneInfo(tz))
    return dt.strftime("%I:%M %p").lstrip("0")


def format_events_for_message(events: list[dict[str, Any]]) -> str:
    if not events:
        return "No events scheduled."
    lines = []
    for e in events:
        line = f"{format_event_time(e.get('start', ''))}: {e.get('summary', 'No title')}"
        if e.get("location"):
            line += f" @ {e['location']}"
        lines.append(line)
    return "\n".join(lines)


_client: CalendarClient | None = None


def get_client() -> CalendarClient:
    global _client
    if _client is None:
        _client = CalendarClient()
    return _client


def get_todays_events() -> list[dict[str, Any]]:
    """Today's events, or [] when no Google credentials are configured."""
    client = get_client()
    if not client.tokens.configured:
        return []
    return client.get_todays_events()
