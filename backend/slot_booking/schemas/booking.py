import datetime as dt

from pydantic import BaseModel, ConfigDict, Field


class SlotOut(BaseModel):
    label: str
    available: bool


class SlotCatalogOut(BaseModel):
    date: dt.date
    slots: list[SlotOut]


class BookedSlotsOut(BaseModel):
    date: dt.date
    booked_slots: list[str]


class BookingDatesOut(BaseModel):
    dates: list[dt.date]


class BookingCreateIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    date: dt.date
    time_slot: str = Field(min_length=1, max_length=20)


class PreviousSlotOut(BaseModel):
    date: dt.date
    time_slot: str


class BookingOut(BaseModel):
    booking_id: int
    user_id: str
    date: dt.date
    time_slot: str
    duration_minutes: int
    status: str
    queue_number: int | None = None
    scheduled_start_at: dt.datetime
    scheduled_end_at: dt.datetime
    meeting_provider: str | None = None
    meeting_id: str | None = None
    meeting_password: str | None = None
    join_url: str | None = None


class BookingResultOut(BaseModel):
    booking: BookingOut
    previous: PreviousSlotOut | None = None


class MyBookingOut(BaseModel):
    date: dt.date
    time_slot: str


class StaffMeetingOut(BookingOut):
    full_name: str
    email: str | None = None
    phone: str | None = None
    interviewer_notes: str | None = None


class CompleteMeetingIn(BaseModel):
    notes: str | None = Field(default=None, max_length=4000)


class RescheduleMeetingIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    date: dt.date | None = None
    time_slot: str | None = Field(default=None, min_length=1, max_length=20)
    duration_minutes: int | None = Field(default=None, ge=1, le=240)
