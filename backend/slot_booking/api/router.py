from fastapi import APIRouter

from slot_booking.api.routes import auth
from slot_booking.api.routes import bookings
from slot_booking.api.routes import realtime
from slot_booking.api.routes import staff

api_router = APIRouter()
api_router.include_router(auth.router)
api_router.include_router(bookings.router)
api_router.include_router(staff.router)
api_router.include_router(realtime.router)
