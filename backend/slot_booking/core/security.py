from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError
from jose import jwt as jose_jwt

from slot_booking.core.config import settings

logger = logging.getLogger(__name__)


def create_identity_token(
    *,
    user_id: str,
    email: str | None,
    phone: str | None,
    name: str | None,
    expires_delta: timedelta | None = None,
) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(days=settings.jwt_ttl_days))
    claims: dict[str, Any] = {
        "sub": user_id,
        "email": email,
        "phone": phone,
        "name": name,
        "exp": expire,
    }
    return jose_jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_identity_token(token: str) -> dict[str, Any] | None:
    """
    Verify and decode an identity token.

    Returns the claims, or None when the token is malformed, expired or has no subject.
    """
    if not token:
        return None
    try:
        payload = jose_jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError as exc:
        logger.info("identity token rejected: %s", exc)
        return None
    if not payload.get("sub"):
        return None
    return payload
