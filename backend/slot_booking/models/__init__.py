from slot_booking.db.base import Base
from slot_booking.models.booking import Booking, BookingDay
from slot_booking.models.event import BookingEvent
from slot_booking.models.operation_retry import OperationRetry
from slot_booking.models.presence import PresenceSession
from slot_booking.models.user import RegisteredUser

__all__ = [
    "Base",
    "Booking",
    "BookingDay",
    "BookingEvent",
    "OperationRetry",
    "PresenceSession",
    "RegisteredUser",
]
