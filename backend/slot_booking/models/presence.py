from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from slot_booking.db.base import Base

PRESENCE_ACTIVE = "active"
PRESENCE_INACTIVE = "inactive"


class PresenceSession(Base):
    __tablename__ = "presence_session"

    presence_session_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("registered_user.user_id"), unique=True, index=True)
    status: Mapped[str] = mapped_column(String(20), default=PRESENCE_INACTIVE)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, index=True)
