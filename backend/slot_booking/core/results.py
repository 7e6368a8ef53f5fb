from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar, Union

T = TypeVar("T")


class BookingErrorKind(str, Enum):
    USER_NOT_FOUND = "user_not_found"
    USER_NOT_APPROVED = "user_not_approved"
    SLOT_CONFLICT = "slot_conflict"
    PAST_DATE_REJECTED = "past_date_rejected"
    PROVISIONING_FAILED = "provisioning_failed"
    STORE_UNAVAILABLE = "store_unavailable"
    UNAUTHORIZED = "unauthorized"
    INVALID_SLOT = "invalid_slot"
    NOT_FOUND = "not_found"
    INVALID_STATE = "invalid_state"


DEFAULT_MESSAGES: dict[BookingErrorKind, str] = {
    BookingErrorKind.USER_NOT_FOUND: "User not found.",
    BookingErrorKind.USER_NOT_APPROVED: "User is not approved for booking.",
    BookingErrorKind.SLOT_CONFLICT: "This time slot has just been booked. Please pick another one.",
    BookingErrorKind.PAST_DATE_REJECTED: "Bookings in the past are not allowed.",
    BookingErrorKind.PROVISIONING_FAILED: "Could not create the video meeting. Please try again.",
    BookingErrorKind.STORE_UNAVAILABLE: "Booking data is temporarily unavailable. Please try again.",
    BookingErrorKind.UNAUTHORIZED: "Please sign in first.",
    BookingErrorKind.INVALID_SLOT: "This date or time slot cannot be booked.",
    BookingErrorKind.NOT_FOUND: "No booking found.",
    BookingErrorKind.INVALID_STATE: "The booking is not in a state that allows this action.",
}


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    kind: BookingErrorKind
    message: str = ""

    def __post_init__(self) -> None:
        if not self.message:
            object.__setattr__(self, "message", DEFAULT_MESSAGES[self.kind])

    @property
    def ok(self) -> bool:
        return False


Result = Union[Ok[T], Err]
