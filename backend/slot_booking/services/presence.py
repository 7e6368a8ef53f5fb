from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from slot_booking.core.datetime_utils import utcnow_naive
from slot_booking.models.presence import PRESENCE_ACTIVE, PRESENCE_INACTIVE, PresenceSession

logger = logging.getLogger(__name__)


async def set_presence(session: AsyncSession, *, user_id: str, status: str) -> PresenceSession:
    now = utcnow_naive()
    row = (
        await session.execute(select(PresenceSession).where(PresenceSession.user_id == user_id))
    ).scalars().one_or_none()
    if row is None:
        row = PresenceSession(user_id=user_id, status=status, created_at=now, updated_at=now)
        session.add(row)
    else:
        row.status = status
        row.updated_at = now
    await session.flush()
    return row


async def mark_presence(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    user_id: str,
    status: str,
) -> bool:
    """Best-effort presence update in its own session; failures are logged, never raised."""
    try:
        async with session_factory() as session:
            await set_presence(session, user_id=user_id, status=status)
            await session.commit()
    except SQLAlchemyError:
        logger.warning("presence update to %s failed for user %s", status, user_id, exc_info=True)
        return False
    return True


async def is_presence_active(
    session: AsyncSession,
    *,
    user_id: str,
    stale_minutes: int,
    now: datetime | None = None,
) -> bool:
    now = now or utcnow_naive()
    row = (
        await session.execute(select(PresenceSession).where(PresenceSession.user_id == user_id))
    ).scalars().one_or_none()
    if row is None or row.status != PRESENCE_ACTIVE:
        return False
    return row.updated_at >= now - timedelta(minutes=stale_minutes)


async def sweep_stale_presence(session: AsyncSession, *, stale_minutes: int, now: datetime | None = None) -> int:
    now = now or utcnow_naive()
    cutoff = now - timedelta(minutes=stale_minutes)
    result = await session.execute(
        update(PresenceSession)
        .where(PresenceSession.status == PRESENCE_ACTIVE, PresenceSession.updated_at < cutoff)
        .values(status=PRESENCE_INACTIVE, updated_at=now)
    )
    await session.commit()
    return int(result.rowcount or 0)
