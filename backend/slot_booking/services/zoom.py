from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Callable
from zoneinfo import ZoneInfo

import httpx

from slot_booking.services.meeting_provider import MeetingProvider, MeetingProviderError, MeetingRef, MeetingRequest

logger = logging.getLogger(__name__)

TOKEN_REFRESH_MARGIN_SECONDS = 60

MEETING_SETTINGS: dict[str, Any] = {
    "host_video": True,
    "participant_video": True,
    "join_before_host": False,
    "mute_upon_entry": True,
    "watermark": False,
    "use_pmi": False,
    "approval_type": 0,
    "audio": "both",
    "auto_recording": "none",
    "waiting_room": True,
    "allow_multiple_devices": True,
    "meeting_authentication": False,
    "registrants_email_notification": False,
}


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error_description") or body.get("error") or response.reason_phrase)
    return response.reason_phrase


def _local_start_time(start_at: datetime, timezone: str) -> str:
    return start_at.astimezone(ZoneInfo(timezone)).strftime("%Y-%m-%dT%H:%M:%S")


class ZoomMeetingProvider(MeetingProvider):
    """Zoom REST API with server-to-server OAuth."""

    name = "zoom"

    def __init__(
        self,
        *,
        account_id: str,
        client_id: str,
        client_secret: str,
        api_base_url: str = "https://api.zoom.us/v2",
        oauth_url: str = "https://zoom.us/oauth/token",
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._account_id = (account_id or "").strip()
        self._client_id = (client_id or "").strip()
        self._client_secret = (client_secret or "").strip()
        self._api_base_url = api_base_url.rstrip("/")
        self._oauth_url = oauth_url
        self._client = httpx.AsyncClient(timeout=timeout_seconds, transport=transport)
        self._clock = clock
        self._access_token: str | None = None
        self._token_expires_at = 0.0
        self._token_lock = asyncio.Lock()

    async def _get_access_token(self) -> str:
        if self._access_token and self._clock() < self._token_expires_at:
            return self._access_token
        async with self._token_lock:
            if self._access_token and self._clock() < self._token_expires_at:
                return self._access_token
            if not (self._account_id and self._client_id and self._client_secret):
                raise MeetingProviderError("Missing Zoom OAuth credentials")

            response = await self._client.post(
                self._oauth_url,
                data={"grant_type": "account_credentials", "account_id": self._account_id},
                auth=(self._client_id, self._client_secret),
            )
            if response.status_code >= 400:
                raise MeetingProviderError(f"OAuth error ({response.status_code}): {_error_message(response)}")
            payload = response.json()
            token = payload.get("access_token")
            if not token:
                raise MeetingProviderError("OAuth response did not include an access token")
            expires_in = int(payload.get("expires_in") or 3600)
            self._access_token = token
            self._token_expires_at = self._clock() + max(expires_in - TOKEN_REFRESH_MARGIN_SECONDS, 0)
            return token

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        token = await self._get_access_token()
        headers = {"Authorization": f"Bearer {token}"}
        return await self._client.request(method, f"{self._api_base_url}{path}", headers=headers, **kwargs)

    async def probe(self) -> bool:
        try:
            response = await self._request("GET", "/users/me")
        except (httpx.HTTPError, MeetingProviderError) as exc:
            logger.warning("zoom probe failed: %s", exc)
            return False
        if response.status_code != 200:
            logger.warning("zoom probe failed (%s): %s", response.status_code, _error_message(response))
            return False
        return True

    async def create_meeting(self, request: MeetingRequest) -> MeetingRef:
        body = {
            "topic": request.topic,
            "type": 2,
            "start_time": _local_start_time(request.start_at, request.timezone),
            "duration": request.duration_minutes,
            "timezone": request.timezone,
            "settings": MEETING_SETTINGS,
        }
        response = await self._request("POST", "/users/me/meetings", json=body)
        if response.status_code >= 400:
            raise MeetingProviderError(f"Zoom create failed ({response.status_code}): {_error_message(response)}")
        data = response.json()
        return MeetingRef(
            provider=self.name,
            meeting_id=str(data["id"]),
            join_url=data.get("join_url"),
            password=data.get("password"),
        )

    async def update_meeting(self, meeting_id: str, *, start_at: datetime, duration_minutes: int, timezone: str) -> None:
        body = {
            "start_time": _local_start_time(start_at, timezone),
            "duration": duration_minutes,
            "timezone": timezone,
        }
        response = await self._request("PATCH", f"/meetings/{meeting_id}", json=body)
        if response.status_code >= 400:
            raise MeetingProviderError(f"Zoom update failed ({response.status_code}): {_error_message(response)}")

    async def delete_meeting(self, meeting_id: str) -> None:
        response = await self._request("DELETE", f"/meetings/{meeting_id}")
        if response.status_code == 404:
            return
        if response.status_code >= 400:
            raise MeetingProviderError(f"Zoom delete failed ({response.status_code}): {_error_message(response)}")

    async def aclose(self) -> None:
        await self._client.aclose()
