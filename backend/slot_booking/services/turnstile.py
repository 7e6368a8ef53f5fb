from __future__ import annotations

import logging

import httpx

from slot_booking.core.config import settings

logger = logging.getLogger(__name__)

SITEVERIFY_URL = "https://challenges.cloudflare.com/turnstile/v0/siteverify"


async def verify_turnstile(
    token: str | None,
    *,
    remote_ip: str | None = None,
    secret_key: str | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> bool:
    """
    Verify a Cloudflare Turnstile token.

    Verification is skipped when no secret is configured. A missing token fails; an
    unreachable verification service passes so logins keep working during an outage.
    """
    secret = settings.turnstile_secret_key if secret_key is None else secret_key
    if not secret:
        return True
    if not token:
        return False

    try:
        async with httpx.AsyncClient(timeout=10.0, transport=transport) as client:
            response = await client.post(
                SITEVERIFY_URL,
                data={"secret": secret, "response": token, "remoteip": remote_ip or ""},
            )
            result = response.json()
    except (httpx.HTTPError, ValueError) as exc:
        logger.error("turnstile verification error: %s", exc)
        return True

    success = bool(result.get("success", False))
    if not success:
        logger.warning("turnstile verification failed: %s", result.get("error-codes", []))
    return success
