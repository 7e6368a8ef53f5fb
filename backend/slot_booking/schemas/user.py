from pydantic import BaseModel


class IdentityContext(BaseModel):
    user_id: str
    email: str | None = None
    phone: str | None = None
    full_name: str | None = None


class RegisteredUserOut(BaseModel):
    user_id: str
    email: str | None = None
    phone: str | None = None
    full_name: str
    status: str

    class Config:
        from_attributes = True
