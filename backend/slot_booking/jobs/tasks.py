from __future__ import annotations

import logging

from slot_booking.core.config import settings
from slot_booking.db.session import SessionLocal
from slot_booking.services.meeting_provider import MeetingProvider
from slot_booking.services.operation_queue import process_due_operations
from slot_booking.services.presence import sweep_stale_presence

logger = logging.getLogger(__name__)


async def run_operation_retries(provider: MeetingProvider) -> None:
    async with SessionLocal() as session:
        summary = await process_due_operations(session, provider=provider, limit=50)
    if summary["picked"]:
        logger.info("operation retries: %s", summary)


async def run_presence_sweep() -> None:
    async with SessionLocal() as session:
        cleared = await sweep_stale_presence(session, stale_minutes=settings.presence_stale_minutes)
    if cleared:
        logger.info("presence sweep marked %s sessions inactive", cleared)
