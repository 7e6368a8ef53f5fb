from __future__ import annotations

from typing import Optional

from fastapi import HTTPException, Request, WebSocket, status

from slot_booking.core.config import settings
from slot_booking.core.results import BookingErrorKind, DEFAULT_MESSAGES
from slot_booking.core.security import decode_identity_token
from slot_booking.schemas.user import IdentityContext


def _read_bearer_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("authorization")
    if not auth_header:
        return None
    parts = auth_header.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1].strip() or None


def identity_from_token(token: str | None) -> IdentityContext | None:
    payload = decode_identity_token(token or "")
    if not payload:
        return None
    return IdentityContext(
        user_id=str(payload["sub"]),
        email=payload.get("email"),
        phone=payload.get("phone"),
        full_name=payload.get("name"),
    )


async def get_current_identity(request: Request) -> IdentityContext:
    token = _read_bearer_token(request) or request.cookies.get(settings.token_cookie_name)
    identity = identity_from_token(token)
    if identity is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error": BookingErrorKind.UNAUTHORIZED.value,
                "message": DEFAULT_MESSAGES[BookingErrorKind.UNAUTHORIZED],
            },
        )
    return identity


def authenticate_websocket(websocket: WebSocket) -> IdentityContext | None:
    # Browsers send the login cookie on the upgrade request; other clients may pass ?token=.
    token = websocket.cookies.get(settings.token_cookie_name) or websocket.query_params.get("token")
    return identity_from_token(token)


def redact(value: str | None) -> str:
    """Mask an email or phone number for log output."""
    if not value:
        return "-"
    if "@" in value:
        local, _, domain = value.partition("@")
        return f"{local[:1]}***@{domain}"
    if len(value) <= 4:
        return "***"
    return f"***{value[-4:]}"
