from __future__ import annotations

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from slot_booking.jobs.tasks import run_operation_retries, run_presence_sweep
from slot_booking.services.meeting_provider import MeetingProvider


def start_scheduler(provider: MeetingProvider) -> AsyncIOScheduler:
    scheduler = AsyncIOScheduler(timezone="UTC")
    scheduler.add_job(
        run_operation_retries,
        IntervalTrigger(minutes=1),
        args=[provider],
        id="operation_retries",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.add_job(run_presence_sweep, IntervalTrigger(minutes=10), id="presence_sweep", replace_existing=True)
    scheduler.start()
    return scheduler
