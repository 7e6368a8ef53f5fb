from datetime import date, datetime

from sqlalchemy import Date, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from slot_booking.db.base import Base

BOOKING_STATUS_SCHEDULED = "scheduled"
BOOKING_STATUS_CONFIRMED = "confirmed"
BOOKING_STATUS_COMPLETED = "completed"

# Statuses that hold a slot.
LIVE_BOOKING_STATUSES = (BOOKING_STATUS_SCHEDULED, BOOKING_STATUS_CONFIRMED)


class Booking(Base):
    __tablename__ = "booking"

    booking_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("registered_user.user_id"), unique=True, index=True)

    # Start of the local booking day, stored as naive UTC.
    meeting_date: Mapped[datetime] = mapped_column(DateTime, index=True)
    time_slot: Mapped[str] = mapped_column(String(20))
    scheduled_start_at: Mapped[datetime] = mapped_column(DateTime)
    scheduled_end_at: Mapped[datetime] = mapped_column(DateTime)
    duration_minutes: Mapped[int] = mapped_column(Integer, default=10)

    status: Mapped[str] = mapped_column(String(20), default=BOOKING_STATUS_SCHEDULED, index=True)
    queue_number: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)

    meeting_provider: Mapped[str | None] = mapped_column(String(20), nullable=True)
    external_meeting_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    meeting_password: Mapped[str | None] = mapped_column(String(64), nullable=True)
    join_url: Mapped[str | None] = mapped_column(String(500), nullable=True)

    interviewer_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class BookingDay(Base):
    """
    One row per booking date. Allocation locks it FOR UPDATE so queue numbering and the
    conflict check for a date run one at a time across processes.
    """

    __tablename__ = "booking_day"

    day: Mapped[date] = mapped_column(Date, primary_key=True)
    last_allocated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
