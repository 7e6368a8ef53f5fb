from fastapi import Depends
from fastapi.requests import HTTPConnection
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from slot_booking.core.auth import get_current_identity
from slot_booking.db.session import get_session, get_session_factory
from slot_booking.schemas.user import IdentityContext
from slot_booking.services.allocator import BookingAllocator
from slot_booking.services.meeting_provisioner import MeetingProvisioner
from slot_booking.services.realtime import DateRoomHub


async def get_db_session() -> AsyncSession:
    async for session in get_session():
        yield session


def get_db_session_factory() -> async_sessionmaker[AsyncSession]:
    return get_session_factory()


async def get_identity(identity: IdentityContext = Depends(get_current_identity)) -> IdentityContext:
    return identity


def get_room_hub(conn: HTTPConnection) -> DateRoomHub:
    return conn.app.state.room_hub


def get_allocator(conn: HTTPConnection) -> BookingAllocator:
    return conn.app.state.allocator


def get_provisioner(conn: HTTPConnection) -> MeetingProvisioner:
    return conn.app.state.provisioner
