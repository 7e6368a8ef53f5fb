import os

os.environ.setdefault("BOOKING_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("BOOKING_JWT_SECRET", "test-secret")
os.environ.setdefault("BOOKING_MEETING_PROVIDER", "disabled")
os.environ.setdefault("BOOKING_INTERNAL_API_KEY", "test-staff-key")
os.environ.setdefault("BOOKING_TURNSTILE_SECRET_KEY", "")
os.environ.setdefault("BOOKING_REDIS_URL", "")
os.environ.setdefault("BOOKING_BOOKING_TIMEZONE", "Asia/Bangkok")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from factories import BANGKOK, FIXED_NOW, ApiHarness, FakeMeetingProvider
from slot_booking.api.deps import get_db_session, get_db_session_factory
from slot_booking.main import create_app
from slot_booking.models import Base
from slot_booking.services.allocator import BookingAllocator
from slot_booking.services.meeting_provisioner import MeetingProvisioner
from slot_booking.services.slot_catalog import generate_slots


@pytest.fixture()
async def async_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(async_engine):
    return async_sessionmaker(bind=async_engine, expire_on_commit=False, autoflush=False)


@pytest.fixture()
async def db_session(session_factory):
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture()
def fake_provider():
    return FakeMeetingProvider()


@pytest.fixture()
def provisioner(fake_provider, session_factory):
    return MeetingProvisioner(fake_provider, session_factory=session_factory, timeout_seconds=1.0)


@pytest.fixture()
def allocator(provisioner):
    return BookingAllocator(
        provisioner=provisioner,
        tz=BANGKOK,
        catalog=generate_slots(8, 22, 10, 5),
        duration_minutes=10,
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture()
def api():
    provider = FakeMeetingProvider()
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    factory = async_sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)
    app = create_app(provider=provider, session_factory=factory, start_jobs=False)

    async def override_session():
        async with factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_session
    app.dependency_overrides[get_db_session_factory] = lambda: factory

    async def create_schema() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    with TestClient(app) as client:
        harness = ApiHarness(client, app, provider, factory)
        harness.run(create_schema)
        yield harness
        harness.run(engine.dispose)
