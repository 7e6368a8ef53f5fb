from __future__ import annotations

import asyncio
import logging
import weakref
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Awaitable, Callable, Sequence
from zoneinfo import ZoneInfo

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from slot_booking.core.datetime_utils import day_bounds_utc, local_day_of, to_utc_naive, utc_now, utcnow_naive
from slot_booking.core.results import BookingErrorKind, Err, Ok, Result
from slot_booking.models.booking import (
    BOOKING_STATUS_SCHEDULED,
    LIVE_BOOKING_STATUSES,
    Booking,
    BookingDay,
)
from slot_booking.models.user import RegisteredUser
from slot_booking.services.availability import on_day
from slot_booking.services.events import log_event
from slot_booking.services.identity import get_approved_user
from slot_booking.services.meeting_provider import MeetingRef, MeetingRequest
from slot_booking.services.meeting_provisioner import MeetingProvisioner
from slot_booking.services.slot_catalog import SlotDefinition, find_slot, is_bookable_date, slot_start_instant

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PreviousSlot:
    day: date
    time_slot: str


@dataclass(frozen=True)
class AllocationOutcome:
    booking: Booking
    previous: PreviousSlot | None = None


def meeting_ref_of(booking: Booking | None) -> MeetingRef | None:
    if booking is None or not booking.external_meeting_id:
        return None
    return MeetingRef(
        provider=booking.meeting_provider or "",
        meeting_id=booking.external_meeting_id,
        join_url=booking.join_url,
        password=booking.meeting_password,
    )


class BookingAllocator:
    """
    Assigns slots and queue numbers.

    Work for one date is serialized twice: an asyncio lock inside the process and a
    ``SELECT ... FOR UPDATE`` on the ``booking_day`` row across processes. The lock is held
    from the queue number read through the commit, including the provider round trip.
    """

    def __init__(
        self,
        *,
        provisioner: MeetingProvisioner,
        tz: ZoneInfo,
        catalog: Sequence[SlotDefinition],
        bookable_dates: Sequence[date] = (),
        duration_minutes: int = 10,
        topic_template: str = "Interview: {name} Tel: {phone}",
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.provisioner = provisioner
        self.tz = tz
        self.catalog = list(catalog)
        self.bookable_dates = list(bookable_dates)
        self.duration_minutes = duration_minutes
        self.topic_template = topic_template
        self._clock = clock
        self._date_locks: weakref.WeakValueDictionary[date, asyncio.Lock] = weakref.WeakValueDictionary()
        self._background: set[asyncio.Task] = set()

    def _lock_for(self, day: date) -> asyncio.Lock:
        # Entries live only while a caller holds or waits on the lock.
        lock = self._date_locks.get(day)
        if lock is None:
            lock = asyncio.Lock()
            self._date_locks[day] = lock
        return lock

    def has_started(self, day: date, slot: SlotDefinition) -> bool:
        return slot_start_instant(day, slot, self.tz) <= self._clock()

    def validate_target(self, day: date, time_slot: str) -> Result[SlotDefinition]:
        if not is_bookable_date(day, self.bookable_dates):
            return Err(BookingErrorKind.INVALID_SLOT, "This date is not open for booking.")
        slot = find_slot(self.catalog, time_slot)
        if slot is None:
            return Err(BookingErrorKind.INVALID_SLOT)
        if self.has_started(day, slot):
            return Err(BookingErrorKind.PAST_DATE_REJECTED)
        return Ok(slot)

    def _topic(self, user: RegisteredUser) -> str:
        values = {"name": user.full_name or "", "phone": user.phone or "-", "email": user.email or "-"}
        try:
            return self.topic_template.format(**values)
        except (KeyError, IndexError, ValueError):
            return f"Interview: {values['name']}"

    def _spawn(self, coro: Awaitable[object]) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def wait_for_background(self) -> None:
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def _lock_day(self, session: AsyncSession, day: date) -> BookingDay:
        row = (
            await session.execute(select(BookingDay).where(BookingDay.day == day).with_for_update())
        ).scalars().one_or_none()
        if row is None:
            row = BookingDay(day=day)
            session.add(row)
            await session.flush()
        return row

    async def _next_queue_number(self, session: AsyncSession, day: date) -> int:
        current = (
            await session.execute(
                select(func.max(Booking.queue_number)).where(
                    on_day(day, self.tz),
                    Booking.queue_number.is_not(None),
                )
            )
        ).scalar_one_or_none()
        return (current or 0) + 1

    async def _slot_taken(self, session: AsyncSession, *, day: date, label: str, user_id: str) -> bool:
        row = (
            await session.execute(
                select(Booking.booking_id)
                .where(
                    on_day(day, self.tz),
                    Booking.time_slot == label,
                    Booking.status.in_(LIVE_BOOKING_STATUSES),
                    Booking.user_id != user_id,
                )
                .limit(1)
            )
        ).first()
        return row is not None

    def _apply_schedule(self, booking: Booking, *, day: date, slot: SlotDefinition, duration_minutes: int) -> None:
        start_at = slot_start_instant(day, slot, self.tz)
        booking.meeting_date = day_bounds_utc(day, self.tz)[0]
        booking.time_slot = slot.label
        booking.scheduled_start_at = to_utc_naive(start_at, self.tz)
        booking.scheduled_end_at = to_utc_naive(start_at + timedelta(minutes=duration_minutes), self.tz)
        booking.duration_minutes = duration_minutes
        booking.updated_at = utcnow_naive()

    async def allocate(self, session: AsyncSession, *, user_id: str, day: date, time_slot: str) -> Result[AllocationOutcome]:
        target = self.validate_target(day, time_slot)
        if not target.ok:
            logger.info("allocation rejected: %s (%s %s)", target.kind.value, day.isoformat(), time_slot)
            return target

        async with self._lock_for(day):
            try:
                result = await self._allocate_locked(session, user_id=user_id, day=day, slot=target.value)
            except SQLAlchemyError:
                logger.exception("allocation failed on store for %s", day.isoformat())
                await session.rollback()
                return Err(BookingErrorKind.STORE_UNAVAILABLE)

        if not result.ok:
            logger.info("allocation rejected: %s (%s %s)", result.kind.value, day.isoformat(), time_slot)
        return result

    async def _allocate_locked(
        self,
        session: AsyncSession,
        *,
        user_id: str,
        day: date,
        slot: SlotDefinition,
    ) -> Result[AllocationOutcome]:
        found_user = await get_approved_user(session, user_id)
        if not found_user.ok:
            await session.rollback()
            return found_user
        user = found_user.value

        day_row = await self._lock_day(session, day)
        existing = (
            await session.execute(select(Booking).where(Booking.user_id == user.user_id).with_for_update())
        ).scalars().one_or_none()
        previous_ref = meeting_ref_of(existing)
        previous = None
        if existing is not None:
            previous = PreviousSlot(day=local_day_of(existing.meeting_date, self.tz), time_slot=existing.time_slot)

        if existing is not None and existing.queue_number is not None:
            queue_number = existing.queue_number
        else:
            queue_number = await self._next_queue_number(session, day)

        if await self._slot_taken(session, day=day, label=slot.label, user_id=user.user_id):
            await session.rollback()
            return Err(BookingErrorKind.SLOT_CONFLICT)

        provisioned = await self.provisioner.provision(
            MeetingRequest(
                topic=self._topic(user),
                start_at=slot_start_instant(day, slot, self.tz),
                duration_minutes=self.duration_minutes,
                timezone=self.tz.key,
            )
        )
        if not provisioned.ok:
            await session.rollback()
            return provisioned
        ref = provisioned.value

        try:
            booking = existing
            if booking is None:
                booking = Booking(user_id=user.user_id, created_at=utcnow_naive())
                session.add(booking)
            self._apply_schedule(booking, day=day, slot=slot, duration_minutes=self.duration_minutes)
            booking.status = BOOKING_STATUS_SCHEDULED
            booking.queue_number = queue_number
            booking.meeting_provider = ref.provider
            booking.external_meeting_id = ref.meeting_id
            booking.meeting_password = ref.password
            booking.join_url = ref.join_url
            day_row.last_allocated_at = utcnow_naive()
            await session.flush()
            await log_event(
                session,
                action_type="booking_allocated",
                user_id=user.user_id,
                booking_id=booking.booking_id,
                meta_json={
                    "date": day.isoformat(),
                    "time_slot": slot.label,
                    "queue_number": queue_number,
                    "previous_date": previous.day.isoformat() if previous else None,
                    "previous_time_slot": previous.time_slot if previous else None,
                },
            )
            await session.commit()
        except SQLAlchemyError:
            # The new meeting has no booking to belong to.
            self._spawn(self.provisioner.teardown(ref, user_id=user.user_id))
            raise

        if previous_ref is not None:
            self._spawn(self.provisioner.teardown(previous_ref, user_id=user.user_id, booking_id=booking.booking_id))

        logger.info(
            "booking %s allocated: %s %s queue=%s",
            booking.booking_id,
            day.isoformat(),
            slot.label,
            queue_number,
        )
        return Ok(AllocationOutcome(booking=booking, previous=previous))

    async def reschedule(
        self,
        session: AsyncSession,
        *,
        booking_id: int,
        day: date | None = None,
        time_slot: str | None = None,
        duration_minutes: int | None = None,
    ) -> Result[AllocationOutcome]:
        """Move a scheduled booking. The provider update runs after the commit and never blocks it."""
        try:
            current = await session.get(Booking, booking_id)
        except SQLAlchemyError:
            logger.exception("booking lookup failed")
            return Err(BookingErrorKind.STORE_UNAVAILABLE)
        if current is None:
            return Err(BookingErrorKind.NOT_FOUND)

        current_day = local_day_of(current.meeting_date, self.tz)
        target_day = day or current_day
        target = self.validate_target(target_day, time_slot or current.time_slot)
        if not target.ok:
            await session.rollback()
            return target
        slot = target.value
        duration = duration_minutes or current.duration_minutes or self.duration_minutes

        async with self._lock_for(target_day):
            try:
                await self._lock_day(session, target_day)
                booking = (
                    await session.execute(
                        select(Booking)
                        .where(Booking.booking_id == booking_id)
                        .with_for_update()
                        .execution_options(populate_existing=True)
                    )
                ).scalars().one()
                if booking.status != BOOKING_STATUS_SCHEDULED:
                    await session.rollback()
                    return Err(BookingErrorKind.INVALID_STATE, "Only scheduled meetings can be rescheduled.")
                if await self._slot_taken(session, day=target_day, label=slot.label, user_id=booking.user_id):
                    await session.rollback()
                    return Err(BookingErrorKind.SLOT_CONFLICT)

                previous = PreviousSlot(day=current_day, time_slot=booking.time_slot)
                self._apply_schedule(booking, day=target_day, slot=slot, duration_minutes=duration)
                await log_event(
                    session,
                    action_type="booking_rescheduled",
                    user_id=booking.user_id,
                    booking_id=booking.booking_id,
                    meta_json={
                        "date": target_day.isoformat(),
                        "time_slot": slot.label,
                        "duration_minutes": duration,
                        "previous_date": previous.day.isoformat(),
                        "previous_time_slot": previous.time_slot,
                    },
                )
                await session.commit()
            except SQLAlchemyError:
                logger.exception("reschedule failed on store for booking %s", booking_id)
                await session.rollback()
                return Err(BookingErrorKind.STORE_UNAVAILABLE)

        ref = meeting_ref_of(booking)
        if ref is not None:
            await self.provisioner.reschedule(
                ref,
                start_at=slot_start_instant(target_day, slot, self.tz),
                duration_minutes=duration,
                timezone_name=self.tz.key,
                user_id=booking.user_id,
                booking_id=booking.booking_id,
            )

        if previous.day == target_day and previous.time_slot == slot.label:
            previous = None
        return Ok(AllocationOutcome(booking=booking, previous=previous))
