from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from slot_booking.api.deps import get_allocator, get_db_session, get_provisioner, get_room_hub
from slot_booking.api.errors import http_error
from slot_booking.api.routes.bookings import allocation_out, booking_out, broadcast_outcome
from slot_booking.models.booking import Booking
from slot_booking.models.user import RegisteredUser
from slot_booking.schemas.booking import (
    BookingOut,
    BookingResultOut,
    CompleteMeetingIn,
    RescheduleMeetingIn,
    StaffMeetingOut,
)
from slot_booking.services.allocator import BookingAllocator
from slot_booking.services.meeting_provisioner import MeetingProvisioner
from slot_booking.services.realtime import DateRoomHub
from slot_booking.services.staff_meetings import cancel_meeting, complete_meeting, list_upcoming_meetings

router = APIRouter(prefix="/staff/meetings", tags=["staff"])


def _staff_meeting_out(booking: Booking, user: RegisteredUser, allocator: BookingAllocator) -> StaffMeetingOut:
    return StaffMeetingOut(
        **booking_out(booking, allocator).model_dump(),
        full_name=user.full_name,
        email=user.email,
        phone=user.phone,
        interviewer_notes=booking.interviewer_notes,
    )


@router.get("/upcoming", response_model=list[StaffMeetingOut])
async def upcoming_meetings(
    session: AsyncSession = Depends(get_db_session),
    allocator: BookingAllocator = Depends(get_allocator),
):
    today = datetime.now(allocator.tz).date()
    rows = await list_upcoming_meetings(session, today=today, tz=allocator.tz)
    if not rows.ok:
        raise http_error(rows)
    return [_staff_meeting_out(booking, user, allocator) for booking, user in rows.value]


@router.post("/{booking_id}/complete", response_model=BookingOut)
async def mark_meeting_completed(
    booking_id: int,
    payload: CompleteMeetingIn | None = None,
    session: AsyncSession = Depends(get_db_session),
    allocator: BookingAllocator = Depends(get_allocator),
):
    result = await complete_meeting(session, booking_id=booking_id, notes=payload.notes if payload else None)
    if not result.ok:
        raise http_error(result)
    return booking_out(result.value, allocator)


@router.post("/{booking_id}/reschedule", response_model=BookingResultOut)
async def reschedule_meeting(
    booking_id: int,
    payload: RescheduleMeetingIn,
    session: AsyncSession = Depends(get_db_session),
    allocator: BookingAllocator = Depends(get_allocator),
    hub: DateRoomHub = Depends(get_room_hub),
):
    result = await allocator.reschedule(
        session,
        booking_id=booking_id,
        day=payload.date,
        time_slot=payload.time_slot,
        duration_minutes=payload.duration_minutes,
    )
    if not result.ok:
        raise http_error(result)
    await broadcast_outcome(hub, result.value, allocator)
    return allocation_out(result.value, allocator)


@router.post("/{booking_id}/cancel-meeting", response_model=BookingOut)
async def cancel_external_meeting(
    booking_id: int,
    session: AsyncSession = Depends(get_db_session),
    allocator: BookingAllocator = Depends(get_allocator),
    provisioner: MeetingProvisioner = Depends(get_provisioner),
):
    result = await cancel_meeting(session, booking_id=booking_id, provisioner=provisioner)
    if not result.ok:
        raise http_error(result)
    return booking_out(result.value, allocator)
