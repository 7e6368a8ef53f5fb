from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from slot_booking.api.deps import get_allocator, get_db_session, get_db_session_factory
from slot_booking.api.errors import http_error
from slot_booking.api.routes.bookings import booking_out
from slot_booking.core.auth import identity_from_token, redact
from slot_booking.core.config import settings
from slot_booking.core.results import BookingErrorKind, Err
from slot_booking.core.security import create_identity_token
from slot_booking.middleware.rate_limit import client_ip
from slot_booking.models.presence import PRESENCE_INACTIVE
from slot_booking.schemas.auth import LoginIn, LoginOut
from slot_booking.schemas.user import RegisteredUserOut
from slot_booking.services.allocator import BookingAllocator
from slot_booking.services.availability import get_booking_for_user
from slot_booking.services.identity import resolve_user_by_contact
from slot_booking.services.presence import is_presence_active, mark_presence
from slot_booking.services.turnstile import verify_turnstile

router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger(__name__)


@router.post("/login", response_model=LoginOut)
async def login(
    payload: LoginIn,
    request: Request,
    response: Response,
    session: AsyncSession = Depends(get_db_session),
    allocator: BookingAllocator = Depends(get_allocator),
):
    if not await verify_turnstile(payload.turnstile_token, remote_ip=client_ip(request)):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "captcha_failed", "message": "Security check failed. Please try again."},
        )

    found = await resolve_user_by_contact(session, email=payload.email, phone=payload.phone)
    if not found.ok:
        logger.info("login rejected (%s) for %s", found.kind.value, redact(payload.email or payload.phone))
        raise http_error(found)
    user = found.value

    if settings.block_concurrent_sessions:
        try:
            active = await is_presence_active(
                session,
                user_id=user.user_id,
                stale_minutes=settings.presence_stale_minutes,
            )
        except SQLAlchemyError:
            logger.exception("presence lookup failed")
            raise http_error(Err(BookingErrorKind.STORE_UNAVAILABLE))
        if active:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail={"error": "session_active", "message": "This account is already in use on another device."},
            )

    token = create_identity_token(user_id=user.user_id, email=user.email, phone=user.phone, name=user.full_name)
    response.set_cookie(
        settings.token_cookie_name,
        token,
        httponly=True,
        samesite="lax",
        secure=settings.environment == "production",
        max_age=settings.jwt_ttl_days * 24 * 60 * 60,
        path="/",
    )

    booking = await get_booking_for_user(session, user.user_id)
    logger.info("login ok for %s", redact(user.email or user.phone))
    return LoginOut(
        token=token,
        user=RegisteredUserOut.model_validate(user),
        booking=booking_out(booking.value, allocator) if booking.ok else None,
    )


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    request: Request,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_db_session_factory),
):
    identity = identity_from_token(request.cookies.get(settings.token_cookie_name))
    if identity is not None:
        await mark_presence(session_factory, user_id=identity.user_id, status=PRESENCE_INACTIVE)
    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    response.delete_cookie(settings.token_cookie_name, path="/")
    return response
