from __future__ import annotations

import logging
from datetime import date
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from slot_booking.core.datetime_utils import day_bounds_utc, utcnow_naive
from slot_booking.core.results import BookingErrorKind, Err, Ok, Result
from slot_booking.models.booking import BOOKING_STATUS_COMPLETED, BOOKING_STATUS_SCHEDULED, Booking
from slot_booking.models.user import RegisteredUser
from slot_booking.services.allocator import meeting_ref_of
from slot_booking.services.events import log_event
from slot_booking.services.meeting_provisioner import MeetingProvisioner

logger = logging.getLogger(__name__)


async def list_upcoming_meetings(
    session: AsyncSession,
    *,
    today: date,
    tz: ZoneInfo,
) -> Result[list[tuple[Booking, RegisteredUser]]]:
    start, _ = day_bounds_utc(today, tz)
    try:
        rows = (
            await session.execute(
                select(Booking, RegisteredUser)
                .join(RegisteredUser, RegisteredUser.user_id == Booking.user_id)
                .where(
                    Booking.status == BOOKING_STATUS_SCHEDULED,
                    Booking.meeting_date >= start,
                )
                .order_by(Booking.meeting_date.asc(), Booking.time_slot.asc())
            )
        ).all()
    except SQLAlchemyError:
        logger.exception("upcoming meetings lookup failed")
        return Err(BookingErrorKind.STORE_UNAVAILABLE)
    return Ok([(booking, user) for booking, user in rows])


async def complete_meeting(session: AsyncSession, *, booking_id: int, notes: str | None = None) -> Result[Booking]:
    try:
        booking = await session.get(Booking, booking_id)
        if booking is None:
            return Err(BookingErrorKind.NOT_FOUND)
        if booking.status == BOOKING_STATUS_COMPLETED:
            return Err(BookingErrorKind.INVALID_STATE, "This meeting is already completed.")

        from_status = booking.status
        booking.status = BOOKING_STATUS_COMPLETED
        if notes:
            booking.interviewer_notes = notes
        booking.updated_at = utcnow_naive()
        await log_event(
            session,
            action_type="meeting_completed",
            user_id=booking.user_id,
            booking_id=booking.booking_id,
            meta_json={"from_status": from_status},
        )
        await session.commit()
    except SQLAlchemyError:
        logger.exception("complete meeting failed for booking %s", booking_id)
        await session.rollback()
        return Err(BookingErrorKind.STORE_UNAVAILABLE)
    return Ok(booking)


async def cancel_meeting(
    session: AsyncSession,
    *,
    booking_id: int,
    provisioner: MeetingProvisioner,
) -> Result[Booking]:
    """Tear down the external meeting and clear its reference. The booking row is kept."""
    try:
        booking = await session.get(Booking, booking_id)
    except SQLAlchemyError:
        logger.exception("booking lookup failed")
        return Err(BookingErrorKind.STORE_UNAVAILABLE)
    if booking is None:
        return Err(BookingErrorKind.NOT_FOUND)

    ref = meeting_ref_of(booking)
    if ref is not None:
        await provisioner.teardown(ref, user_id=booking.user_id, booking_id=booking.booking_id)

    try:
        booking.external_meeting_id = None
        booking.meeting_password = None
        booking.join_url = None
        booking.updated_at = utcnow_naive()
        await log_event(
            session,
            action_type="meeting_cancelled",
            user_id=booking.user_id,
            booking_id=booking.booking_id,
            meta_json={"provider": ref.provider if ref else None, "meeting_id": ref.meeting_id if ref else None},
        )
        await session.commit()
    except SQLAlchemyError:
        logger.exception("cancel meeting failed for booking %s", booking_id)
        await session.rollback()
        return Err(BookingErrorKind.STORE_UNAVAILABLE)
    return Ok(booking)
