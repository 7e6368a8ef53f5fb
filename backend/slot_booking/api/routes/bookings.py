from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Header, Query
from sqlalchemy.ext.asyncio import AsyncSession

from slot_booking.api.deps import get_allocator, get_db_session, get_identity, get_room_hub
from slot_booking.api.errors import http_error
from slot_booking.core.datetime_utils import from_utc_naive, local_day_of
from slot_booking.models.booking import Booking
from slot_booking.schemas.booking import (
    BookedSlotsOut,
    BookingCreateIn,
    BookingDatesOut,
    BookingOut,
    BookingResultOut,
    MyBookingOut,
    PreviousSlotOut,
    SlotCatalogOut,
    SlotOut,
)
from slot_booking.schemas.user import IdentityContext
from slot_booking.services.allocator import AllocationOutcome, BookingAllocator
from slot_booking.services.availability import booked_slots, get_booking_for_user, get_my_booking
from slot_booking.services.realtime import DateRoomHub, announce_slot_change
from slot_booking.services.slot_catalog import is_bookable_date

router = APIRouter(prefix="/bookings", tags=["bookings"])


def booking_out(booking: Booking, allocator: BookingAllocator) -> BookingOut:
    return BookingOut(
        booking_id=booking.booking_id,
        user_id=booking.user_id,
        date=local_day_of(booking.meeting_date, allocator.tz),
        time_slot=booking.time_slot,
        duration_minutes=booking.duration_minutes,
        status=booking.status,
        queue_number=booking.queue_number,
        scheduled_start_at=from_utc_naive(booking.scheduled_start_at, allocator.tz),
        scheduled_end_at=from_utc_naive(booking.scheduled_end_at, allocator.tz),
        meeting_provider=booking.meeting_provider,
        meeting_id=booking.external_meeting_id,
        meeting_password=booking.meeting_password,
        join_url=booking.join_url,
    )


def allocation_out(outcome: AllocationOutcome, allocator: BookingAllocator) -> BookingResultOut:
    previous = None
    if outcome.previous is not None:
        previous = PreviousSlotOut(date=outcome.previous.day, time_slot=outcome.previous.time_slot)
    return BookingResultOut(booking=booking_out(outcome.booking, allocator), previous=previous)


async def broadcast_outcome(hub: DateRoomHub, outcome: AllocationOutcome, allocator: BookingAllocator, *, exclude: str | None = None) -> None:
    booking = outcome.booking
    previous = outcome.previous
    await announce_slot_change(
        hub,
        booked_day=local_day_of(booking.meeting_date, allocator.tz).isoformat(),
        booked_slot=booking.time_slot,
        freed_day=previous.day.isoformat() if previous else None,
        freed_slot=previous.time_slot if previous else None,
        exclude=exclude,
    )


@router.get("/dates", response_model=BookingDatesOut)
async def list_booking_dates(allocator: BookingAllocator = Depends(get_allocator)):
    return BookingDatesOut(dates=allocator.bookable_dates)


@router.get("/slots", response_model=SlotCatalogOut)
async def list_slots(
    day: date = Query(alias="date"),
    session: AsyncSession = Depends(get_db_session),
    allocator: BookingAllocator = Depends(get_allocator),
):
    taken = await booked_slots(session, day, tz=allocator.tz)
    if not taken.ok:
        raise http_error(taken)
    open_day = is_bookable_date(day, allocator.bookable_dates)
    return SlotCatalogOut(
        date=day,
        slots=[
            SlotOut(
                label=slot.label,
                available=open_day and slot.label not in taken.value and not allocator.has_started(day, slot),
            )
            for slot in allocator.catalog
        ],
    )


@router.get("/booked-slots", response_model=BookedSlotsOut)
async def list_booked_slots(
    day: date = Query(alias="date"),
    session: AsyncSession = Depends(get_db_session),
    allocator: BookingAllocator = Depends(get_allocator),
):
    taken = await booked_slots(session, day, tz=allocator.tz)
    if not taken.ok:
        raise http_error(taken)
    return BookedSlotsOut(date=day, booked_slots=sorted(taken.value))


@router.post("", response_model=BookingResultOut)
async def create_booking(
    payload: BookingCreateIn,
    identity: IdentityContext = Depends(get_identity),
    session: AsyncSession = Depends(get_db_session),
    allocator: BookingAllocator = Depends(get_allocator),
    hub: DateRoomHub = Depends(get_room_hub),
    connection_id: str | None = Header(default=None, alias="x-connection-id"),
):
    result = await allocator.allocate(session, user_id=identity.user_id, day=payload.date, time_slot=payload.time_slot)
    if not result.ok:
        raise http_error(result)
    await broadcast_outcome(hub, result.value, allocator, exclude=connection_id)
    return allocation_out(result.value, allocator)


@router.get("/me", response_model=MyBookingOut)
async def get_my_slot(
    day: date = Query(alias="date"),
    identity: IdentityContext = Depends(get_identity),
    session: AsyncSession = Depends(get_db_session),
    allocator: BookingAllocator = Depends(get_allocator),
):
    found = await get_my_booking(session, user_id=identity.user_id, day=day, tz=allocator.tz)
    if not found.ok:
        raise http_error(found)
    return MyBookingOut(date=day, time_slot=found.value.time_slot)


@router.get("/me/details", response_model=BookingOut)
async def get_my_booking_details(
    identity: IdentityContext = Depends(get_identity),
    session: AsyncSession = Depends(get_db_session),
    allocator: BookingAllocator = Depends(get_allocator),
):
    found = await get_booking_for_user(session, identity.user_id)
    if not found.ok:
        raise http_error(found)
    return booking_out(found.value, allocator)
