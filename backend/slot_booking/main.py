from __future__ import annotations

import logging

import uvicorn
from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.middleware.cors import CORSMiddleware

from slot_booking.api.router import api_router
from slot_booking.core.config import settings
from slot_booking.core.datetime_utils import booking_zone
from slot_booking.db.session import SessionLocal
from slot_booking.jobs.scheduler import start_scheduler
from slot_booking.middleware.internal_guard import InternalGuardMiddleware
from slot_booking.middleware.logging import RequestLoggingMiddleware
from slot_booking.middleware.rate_limit import RateLimitMiddleware
from slot_booking.services.allocator import BookingAllocator
from slot_booking.services.meeting_provider import MeetingProvider
from slot_booking.services.meeting_provisioner import MeetingProvisioner, build_meeting_provider
from slot_booking.services.realtime import DateRoomHub
from slot_booking.services.slot_catalog import default_catalog

logging.basicConfig(level=logging.INFO)
logging.getLogger("apscheduler").setLevel(logging.WARNING)
logging.getLogger("apscheduler.scheduler").setLevel(logging.WARNING)
logger = logging.getLogger("slot_booking")


def create_app(
    *,
    provider: MeetingProvider | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    start_jobs: bool = True,
) -> FastAPI:
    app = FastAPI(title=settings.app_name, version="0.1.0", docs_url="/docs", redoc_url="/redoc")

    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        RateLimitMiddleware,
        limit=settings.auth_rate_limit_per_min,
        window_seconds=settings.auth_rate_limit_window_seconds,
    )
    app.add_middleware(
        InternalGuardMiddleware,
        api_key=settings.internal_api_key,
        allow_localhost=settings.internal_api_allow_localhost,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    provisioner = MeetingProvisioner(
        provider or build_meeting_provider(settings),
        session_factory=session_factory or SessionLocal,
        timeout_seconds=settings.provider_timeout_seconds,
    )
    app.state.provisioner = provisioner
    app.state.room_hub = DateRoomHub(redis_url=settings.redis_url)
    app.state.allocator = BookingAllocator(
        provisioner=provisioner,
        tz=booking_zone(),
        catalog=default_catalog(),
        bookable_dates=settings.bookable_dates(),
        duration_minutes=settings.meeting_duration_minutes,
        topic_template=settings.meeting_topic_template,
    )

    @app.get("/health")
    async def health_check():
        return {"status": "ok", "environment": settings.environment, "meeting_provider": provisioner.provider.name}

    app.include_router(api_router)

    @app.on_event("startup")
    async def _startup_jobs() -> None:
        if start_jobs:
            app.state.scheduler = start_scheduler(provisioner.provider)
        logger.info("booking service started (provider=%s)", provisioner.provider.name)

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        scheduler = getattr(app.state, "scheduler", None)
        if scheduler:
            scheduler.shutdown()
        await app.state.allocator.wait_for_background()
        await app.state.room_hub.close()
        await provisioner.aclose()

    return app


app = create_app()


def run() -> None:
    uvicorn.run(
        "slot_booking.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
    )
