from __future__ import annotations

import logging
from datetime import date
from typing import Any

import anyio
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from slot_booking.api.deps import get_allocator, get_db_session_factory, get_room_hub
from slot_booking.core.auth import authenticate_websocket
from slot_booking.models.presence import PRESENCE_ACTIVE, PRESENCE_INACTIVE
from slot_booking.schemas.realtime import AvailableSlotsPayload, DatePayload, SlotEventPayload, SocketMessage
from slot_booking.services.allocator import BookingAllocator
from slot_booking.services.availability import booked_slots
from slot_booking.services.presence import mark_presence
from slot_booking.services.realtime import (
    EVENT_AVAILABLE_SLOTS,
    EVENT_ERROR,
    EVENT_SLOT_BOOKED,
    EVENT_SLOT_UNBOOKED,
    EVENT_SLOTS_ERROR,
    DateRoomHub,
    Subscriber,
)

router = APIRouter(tags=["realtime"])
logger = logging.getLogger(__name__)

WS_CLOSE_UNAUTHORIZED = 4401

NOTIFY_EVENTS = {
    "notify-slot-booked": EVENT_SLOT_BOOKED,
    "notify-slot-unbooked": EVENT_SLOT_UNBOOKED,
}


def _date_payload(data: Any) -> DatePayload:
    # Accepts either a bare date string or {"date": ...}.
    if isinstance(data, str):
        data = {"date": data}
    return DatePayload.model_validate(data)


class SocketSession:
    def __init__(
        self,
        websocket: WebSocket,
        *,
        subscriber: Subscriber,
        hub: DateRoomHub,
        allocator: BookingAllocator,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        self.websocket = websocket
        self.subscriber = subscriber
        self.hub = hub
        self.allocator = allocator
        self.session_factory = session_factory

    async def send(self, event: str, data: Any) -> None:
        # Replies share the connection's outbox so the socket has a single writer.
        self.subscriber.push({"event": event, "data": data})

    async def handle(self, message: SocketMessage) -> None:
        if message.event == "join-date-room":
            day = _date_payload(message.data).date
            await self.hub.join(self.subscriber, day)
            await mark_presence(self.session_factory, user_id=self.subscriber.user_id, status=PRESENCE_ACTIVE)
            return
        if message.event == "leave-date-room":
            day = _date_payload(message.data).date
            await self.hub.leave(self.subscriber, day)
            await mark_presence(self.session_factory, user_id=self.subscriber.user_id, status=PRESENCE_INACTIVE)
            return
        if message.event in NOTIFY_EVENTS:
            payload = SlotEventPayload.model_validate(message.data)
            await self.hub.publish(
                payload.date,
                NOTIFY_EVENTS[message.event],
                payload.wire(),
                exclude=self.subscriber.connection_id,
            )
            return
        if message.event == "get-available-slots":
            await self._send_available_slots(_date_payload(message.data).date)
            return
        await self.send(EVENT_ERROR, {"message": f"Unknown event: {message.event}"})

    async def _send_available_slots(self, day: str) -> None:
        async with self.session_factory() as session:
            taken = await booked_slots(session, date.fromisoformat(day), tz=self.allocator.tz)
        if not taken.ok:
            await self.send(EVENT_SLOTS_ERROR, {"date": day, "message": taken.message})
            return
        payload = AvailableSlotsPayload(date=day, booked_slots=sorted(taken.value))
        await self.send(EVENT_AVAILABLE_SLOTS, payload.wire())


@router.websocket("/ws")
async def booking_socket(
    websocket: WebSocket,
    hub: DateRoomHub = Depends(get_room_hub),
    allocator: BookingAllocator = Depends(get_allocator),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_db_session_factory),
):
    identity = authenticate_websocket(websocket)
    await websocket.accept()
    if identity is None:
        await websocket.close(code=WS_CLOSE_UNAUTHORIZED)
        return

    subscriber = hub.register(websocket.send_json, user_id=identity.user_id)
    socket = SocketSession(
        websocket,
        subscriber=subscriber,
        hub=hub,
        allocator=allocator,
        session_factory=session_factory,
    )
    await socket.send("connected", {"connectionId": subscriber.connection_id})

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = SocketMessage.model_validate_json(raw)
                await socket.handle(message)
            except ValidationError as exc:
                logger.info("invalid socket message: %s", exc.error_count())
                await socket.send(EVENT_ERROR, {"message": "Invalid message"})
    except WebSocketDisconnect:
        pass
    finally:
        # Shutdown cancels the socket task; membership and presence must still be released.
        with anyio.CancelScope(shield=True):
            await hub.disconnect(subscriber)
            await mark_presence(session_factory, user_id=identity.user_id, status=PRESENCE_INACTIVE)
