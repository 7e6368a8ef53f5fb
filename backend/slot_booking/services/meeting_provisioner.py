from __future__ import annotations

import logging
from datetime import datetime, timezone

import anyio
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from slot_booking.core.config import Settings
from slot_booking.core.results import BookingErrorKind, Err, Ok, Result
from slot_booking.services.meeting_provider import (
    DisabledMeetingProvider,
    MeetingProvider,
    MeetingRef,
    MeetingRequest,
)
from slot_booking.services.operation_queue import OP_MEETING_DELETE, OP_MEETING_UPDATE, enqueue_operation

logger = logging.getLogger(__name__)


class MeetingProvisioner:
    """
    Boundary around the video provider.

    ``provision`` returns a Result and bounds the probe + create round trip by ``timeout_seconds``.
    ``teardown`` and ``reschedule`` never raise; failed calls go to the durable retry queue.
    """

    def __init__(
        self,
        provider: MeetingProvider,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        timeout_seconds: float = 10.0,
    ) -> None:
        self.provider = provider
        self._session_factory = session_factory
        self._timeout_seconds = timeout_seconds

    async def provision(self, request: MeetingRequest) -> Result[MeetingRef]:
        try:
            with anyio.fail_after(self._timeout_seconds):
                if not await self.provider.probe():
                    logger.warning("meeting provider %s is unreachable", self.provider.name)
                    return Err(BookingErrorKind.PROVISIONING_FAILED)
                ref = await self.provider.create_meeting(request)
        except TimeoutError:
            logger.warning("meeting provider %s timed out after %ss", self.provider.name, self._timeout_seconds)
            return Err(BookingErrorKind.PROVISIONING_FAILED)
        except Exception:  # noqa: BLE001
            logger.exception("meeting create failed on provider %s", self.provider.name)
            return Err(BookingErrorKind.PROVISIONING_FAILED)
        return Ok(ref)

    async def teardown(self, ref: MeetingRef, *, user_id: str | None = None, booking_id: int | None = None) -> bool:
        try:
            with anyio.fail_after(self._timeout_seconds):
                await self.provider.delete_meeting(ref.meeting_id)
            return True
        except Exception as exc:  # noqa: BLE001
            logger.warning("meeting teardown failed for %s/%s: %s", ref.provider, ref.meeting_id, exc)
        await self._enqueue(
            operation_type=OP_MEETING_DELETE,
            payload={"provider": ref.provider, "meeting_id": ref.meeting_id},
            user_id=user_id,
            booking_id=booking_id,
            idempotency_key=f"{OP_MEETING_DELETE}:{ref.provider}:{ref.meeting_id}",
        )
        return False

    async def reschedule(
        self,
        ref: MeetingRef,
        *,
        start_at: datetime,
        duration_minutes: int,
        timezone_name: str,
        user_id: str | None = None,
        booking_id: int | None = None,
    ) -> bool:
        try:
            with anyio.fail_after(self._timeout_seconds):
                await self.provider.update_meeting(
                    ref.meeting_id,
                    start_at=start_at,
                    duration_minutes=duration_minutes,
                    timezone=timezone_name,
                )
            return True
        except Exception as exc:  # noqa: BLE001
            logger.warning("meeting reschedule failed for %s/%s: %s", ref.provider, ref.meeting_id, exc)
        await self._enqueue(
            operation_type=OP_MEETING_UPDATE,
            payload={
                "provider": ref.provider,
                "meeting_id": ref.meeting_id,
                "booking_id": booking_id,
                "start_at": start_at.astimezone(timezone.utc).isoformat(),
                "duration_minutes": duration_minutes,
                "timezone": timezone_name,
            },
            user_id=user_id,
            booking_id=booking_id,
        )
        return False

    async def _enqueue(self, **kwargs) -> None:
        try:
            async with self._session_factory() as session:
                await enqueue_operation(session, **kwargs)
                await session.commit()
        except SQLAlchemyError:
            logger.exception("could not queue %s for retry", kwargs.get("operation_type"))

    async def aclose(self) -> None:
        await self.provider.aclose()


def build_meeting_provider(config: Settings) -> MeetingProvider:
    if config.meeting_provider == "zoom":
        from slot_booking.services.zoom import ZoomMeetingProvider

        return ZoomMeetingProvider(
            account_id=config.zoom_account_id,
            client_id=config.zoom_client_id,
            client_secret=config.zoom_client_secret,
            api_base_url=config.zoom_api_base_url,
            oauth_url=config.zoom_oauth_url,
            timeout_seconds=config.provider_timeout_seconds,
        )
    if config.meeting_provider == "google":
        from slot_booking.services.calendar import GoogleCalendarMeetingProvider

        return GoogleCalendarMeetingProvider(
            credentials_path=config.google_application_credentials,
            calendar_id=config.calendar_id,
            subject_email=config.calendar_subject_email or None,
        )
    return DisabledMeetingProvider()
