from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone as dt_timezone
from typing import Any
from uuid import uuid4

import anyio
import google.auth
from google.oauth2.service_account import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from slot_booking.core.paths import resolve_repo_path
from slot_booking.services.meeting_provider import MeetingProvider, MeetingProviderError, MeetingRef, MeetingRequest

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/calendar"]


def _calendar_client(credentials_path: str, subject_email: str | None = None):
    if credentials_path:
        credentials = Credentials.from_service_account_file(str(resolve_repo_path(credentials_path)), scopes=SCOPES)
        if subject_email:
            credentials = credentials.with_subject(subject_email)
    else:
        credentials, _ = google.auth.default(scopes=SCOPES)
    return build("calendar", "v3", credentials=credentials, cache_discovery=False)


def _find_meeting_link(event: dict[str, Any]) -> str | None:
    link = event.get("hangoutLink")
    if link:
        return link
    conference = event.get("conferenceData") or {}
    for entry in conference.get("entryPoints", []) or []:
        if entry.get("entryPointType") == "video":
            return entry.get("uri")
    return None


def _time_body(start_at: datetime, duration_minutes: int, tz: str) -> dict[str, Any]:
    start_utc = start_at.astimezone(dt_timezone.utc)
    end_utc = start_utc + timedelta(minutes=duration_minutes)
    return {
        "start": {"dateTime": start_utc.isoformat(), "timeZone": tz},
        "end": {"dateTime": end_utc.isoformat(), "timeZone": tz},
    }


class GoogleCalendarMeetingProvider(MeetingProvider):
    """Calendar events with a Google Meet conference attached; the client library is blocking."""

    name = "google"

    def __init__(self, *, credentials_path: str, calendar_id: str = "primary", subject_email: str | None = None) -> None:
        self._credentials_path = credentials_path
        self._calendar_id = calendar_id or "primary"
        self._subject_email = subject_email or None
        self._service = None

    def _client(self):
        if self._service is None:
            self._service = _calendar_client(self._credentials_path, self._subject_email)
        return self._service

    def _probe_sync(self) -> bool:
        self._client().calendars().get(calendarId=self._calendar_id).execute()
        return True

    async def probe(self) -> bool:
        try:
            return await anyio.to_thread.run_sync(self._probe_sync)
        except Exception as exc:  # noqa: BLE001
            logger.warning("calendar probe failed: %s", exc)
            return False

    def _create_sync(self, request: MeetingRequest) -> MeetingRef:
        body = {
            "summary": request.topic,
            **_time_body(request.start_at, request.duration_minutes, request.timezone),
            "conferenceData": {
                "createRequest": {
                    "conferenceSolutionKey": {"type": "hangoutsMeet"},
                    "requestId": uuid4().hex,
                }
            },
        }
        event = (
            self._client()
            .events()
            .insert(calendarId=self._calendar_id, body=body, conferenceDataVersion=1, sendUpdates="none")
            .execute()
        )
        if not event.get("id"):
            raise MeetingProviderError("Calendar insert returned no event id")
        return MeetingRef(provider=self.name, meeting_id=event["id"], join_url=_find_meeting_link(event))

    async def create_meeting(self, request: MeetingRequest) -> MeetingRef:
        return await anyio.to_thread.run_sync(self._create_sync, request)

    async def update_meeting(self, meeting_id: str, *, start_at: datetime, duration_minutes: int, timezone: str) -> None:
        body = _time_body(start_at, duration_minutes, timezone)
        await anyio.to_thread.run_sync(
            lambda: self._client()
            .events()
            .patch(calendarId=self._calendar_id, eventId=meeting_id, body=body, sendUpdates="none")
            .execute()
        )

    def _delete_sync(self, meeting_id: str) -> None:
        try:
            self._client().events().delete(
                calendarId=self._calendar_id,
                eventId=meeting_id,
                sendUpdates="none",
            ).execute()
        except HttpError as exc:
            if getattr(exc.resp, "status", None) in (404, 410):
                return
            raise

    async def delete_meeting(self, meeting_id: str) -> None:
        await anyio.to_thread.run_sync(self._delete_sync, meeting_id)
