from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from slot_booking.db.base import Base


class BookingEvent(Base):
    """
    Append-only audit trail of booking decisions and provider side effects.
    """

    __tablename__ = "booking_event"

    booking_event_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    booking_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    action_type: Mapped[str] = mapped_column(String(100), index=True)
    meta_json: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
