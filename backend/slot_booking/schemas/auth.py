import re

from pydantic import BaseModel, EmailStr, field_validator, model_validator

from slot_booking.schemas.booking import BookingOut
from slot_booking.schemas.user import RegisteredUserOut

PHONE_RE = re.compile(r"^[0-9]{9,10}$")


class LoginIn(BaseModel):
    email: EmailStr | None = None
    phone: str | None = None
    turnstile_token: str | None = None

    @field_validator("email", mode="before")
    @classmethod
    def _blank_email(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("phone")
    @classmethod
    def _normalize_phone(cls, value: str | None) -> str | None:
        if value is None:
            return None
        cleaned = re.sub(r"[\s-]", "", value)
        if not cleaned:
            return None
        if not PHONE_RE.match(cleaned):
            raise ValueError("Phone number must be 9-10 digits")
        return cleaned

    @model_validator(mode="after")
    def _email_or_phone(self):
        if not self.email and not self.phone:
            raise ValueError("Provide an email or a phone number")
        return self


class LoginOut(BaseModel):
    token: str
    user: RegisteredUserOut
    booking: BookingOut | None = None
