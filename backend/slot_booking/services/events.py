from __future__ import annotations

import json
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from slot_booking.models.event import BookingEvent


async def log_event(
    session: AsyncSession,
    *,
    action_type: str,
    user_id: str | None = None,
    booking_id: int | None = None,
    meta_json: Dict[str, Any] | None = None,
) -> BookingEvent:
    meta_text: Optional[str] = None
    if meta_json is not None:
        meta_text = json.dumps(meta_json, ensure_ascii=False, separators=(",", ":"), default=str)

    event = BookingEvent(
        user_id=user_id,
        booking_id=booking_id,
        action_type=action_type,
        meta_json=meta_text,
    )
    session.add(event)
    await session.flush()
    return event
