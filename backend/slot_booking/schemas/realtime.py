from datetime import date
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SocketMessage(BaseModel):
    event: str = Field(min_length=1, max_length=64)
    data: Any = None


class DatePayload(BaseModel):
    date: str

    @field_validator("date")
    @classmethod
    def _iso_date(cls, value: str) -> str:
        return date.fromisoformat(value.strip()).isoformat()


class SlotEventPayload(DatePayload):
    model_config = ConfigDict(populate_by_name=True)

    time_slot: str = Field(alias="timeSlot", min_length=1, max_length=20)

    def wire(self) -> dict[str, str]:
        return self.model_dump(by_alias=True)


class AvailableSlotsPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    date: str
    booked_slots: list[str] = Field(alias="bookedSlots")

    def wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)
