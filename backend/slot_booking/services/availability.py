from __future__ import annotations

import logging
from datetime import date
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from slot_booking.core.datetime_utils import day_bounds_utc
from slot_booking.core.results import BookingErrorKind, Err, Ok, Result
from slot_booking.models.booking import LIVE_BOOKING_STATUSES, Booking

logger = logging.getLogger(__name__)


def on_day(day: date, tz: ZoneInfo):
    start, end = day_bounds_utc(day, tz)
    return (Booking.meeting_date >= start) & (Booking.meeting_date < end)


async def booked_slots(session: AsyncSession, day: date, *, tz: ZoneInfo) -> Result[set[str]]:
    try:
        rows = (
            await session.execute(
                select(Booking.time_slot).where(
                    on_day(day, tz),
                    Booking.status.in_(LIVE_BOOKING_STATUSES),
                )
            )
        ).scalars().all()
    except SQLAlchemyError:
        logger.exception("booked slots lookup failed for %s", day.isoformat())
        return Err(BookingErrorKind.STORE_UNAVAILABLE)
    return Ok(set(rows))


async def get_booking_for_user(session: AsyncSession, user_id: str) -> Result[Booking]:
    try:
        booking = (
            await session.execute(select(Booking).where(Booking.user_id == user_id))
        ).scalars().one_or_none()
    except SQLAlchemyError:
        logger.exception("booking lookup failed")
        return Err(BookingErrorKind.STORE_UNAVAILABLE)
    if booking is None:
        return Err(BookingErrorKind.NOT_FOUND)
    return Ok(booking)


async def get_my_booking(session: AsyncSession, *, user_id: str, day: date, tz: ZoneInfo) -> Result[Booking]:
    """The caller's live booking on ``day``; ``not_found`` when it is on another day or not live."""
    found = await get_booking_for_user(session, user_id)
    if not found.ok:
        return found
    booking = found.value
    start, end = day_bounds_utc(day, tz)
    if booking.status not in LIVE_BOOKING_STATUSES or not (start <= booking.meeting_date < end):
        return Err(BookingErrorKind.NOT_FOUND)
    return Ok(booking)
