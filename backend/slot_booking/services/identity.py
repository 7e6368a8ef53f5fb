from __future__ import annotations

import logging
import re

from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from slot_booking.core.results import BookingErrorKind, Err, Ok, Result
from slot_booking.models.user import USER_STATUS_APPROVED, RegisteredUser

logger = logging.getLogger(__name__)

_PHONE_STRIP_RE = re.compile(r"[\s-]")


def normalize_email(email: str | None) -> str | None:
    value = (email or "").strip().lower()
    return value or None


def normalize_phone(phone: str | None) -> str | None:
    value = _PHONE_STRIP_RE.sub("", phone or "")
    return value or None


def _check_approved(user: RegisteredUser | None) -> Result[RegisteredUser]:
    if user is None:
        return Err(BookingErrorKind.USER_NOT_FOUND)
    if (user.status or "").lower() != USER_STATUS_APPROVED:
        return Err(BookingErrorKind.USER_NOT_APPROVED)
    return Ok(user)


async def resolve_user_by_contact(
    session: AsyncSession,
    *,
    email: str | None,
    phone: str | None,
) -> Result[RegisteredUser]:
    email = normalize_email(email)
    phone = normalize_phone(phone)
    clauses = []
    if email:
        clauses.append(RegisteredUser.email == email)
    if phone:
        clauses.append(RegisteredUser.phone == phone)
    if not clauses:
        return Err(BookingErrorKind.USER_NOT_FOUND)

    try:
        rows = (
            await session.execute(select(RegisteredUser).where(or_(*clauses)).order_by(RegisteredUser.user_id))
        ).scalars().all()
    except SQLAlchemyError:
        logger.exception("user lookup failed")
        return Err(BookingErrorKind.STORE_UNAVAILABLE)

    # Prefer an approved match when email and phone point at different rows.
    approved = [row for row in rows if (row.status or "").lower() == USER_STATUS_APPROVED]
    return _check_approved(approved[0] if approved else (rows[0] if rows else None))


async def get_approved_user(session: AsyncSession, user_id: str) -> Result[RegisteredUser]:
    try:
        user = await session.get(RegisteredUser, user_id)
    except SQLAlchemyError:
        logger.exception("user lookup failed")
        return Err(BookingErrorKind.STORE_UNAVAILABLE)
    return _check_approved(user)
