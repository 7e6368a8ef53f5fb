from __future__ import annotations

import asyncio
import json
import logging
import os
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

import redis.asyncio as redis

logger = logging.getLogger(__name__)

EVENT_SLOT_BOOKED = "slot-booked"
EVENT_SLOT_UNBOOKED = "slot-unbooked"
EVENT_AVAILABLE_SLOTS = "available-slots-updated"
EVENT_SLOTS_ERROR = "slots-error"
EVENT_ERROR = "error"

OUTBOX_SIZE = 200
RELAY_RETRY_SECONDS = 5.0

SendFn = Callable[[dict[str, Any]], Awaitable[None]]


def room_name(day: str) -> str:
    return f"date-{day}"


def _new_outbox() -> asyncio.Queue[dict[str, Any]]:
    return asyncio.Queue(maxsize=OUTBOX_SIZE)


@dataclass(eq=False)
class Subscriber:
    connection_id: str
    send: SendFn
    user_id: str | None = None
    rooms: set[str] = field(default_factory=set)
    outbox: asyncio.Queue[dict[str, Any]] = field(default_factory=_new_outbox)
    writer: asyncio.Task | None = None

    def push(self, envelope: dict[str, Any]) -> None:
        # A full outbox loses its oldest event rather than blocking the publisher.
        if self.outbox.full():
            try:
                self.outbox.get_nowait()
                self.outbox.task_done()
            except asyncio.QueueEmpty:
                pass
            logger.warning("outbox full for %s, oldest event dropped", self.connection_id)
        self.outbox.put_nowait(envelope)


class DateRoomHub:
    """
    Per-date subscriber groups for live slot events.

    One instance per process, owned by the application. Events go to every member of the
    date room except the originating connection. Each connection has its own outbox and
    writer task, so a slow socket only delays itself. With a Redis URL the hub also relays
    events between processes over pub/sub.
    """

    def __init__(self, *, redis_url: str = "", channel: str = "booking:rooms") -> None:
        self._rooms: dict[str, set[Subscriber]] = {}
        self._connections: set[Subscriber] = set()
        self._lock = asyncio.Lock()
        self._origin = f"{os.getpid()}-{uuid.uuid4().hex[:8]}"
        self._redis_url = (redis_url or "").strip()
        self._redis: redis.Redis | None = None
        self._redis_lock = asyncio.Lock()
        self._listener_task: asyncio.Task | None = None
        self._listener_failed_at: float | None = None
        self._channel = channel

    def register(self, send: SendFn, *, user_id: str | None = None) -> Subscriber:
        subscriber = Subscriber(connection_id=uuid.uuid4().hex, send=send, user_id=user_id)
        subscriber.writer = asyncio.create_task(self._write(subscriber))
        self._connections.add(subscriber)
        return subscriber

    def room_size(self, day: str) -> int:
        return len(self._rooms.get(room_name(day), ()))

    async def join(self, subscriber: Subscriber, day: str) -> None:
        room = room_name(day)
        async with self._lock:
            self._rooms.setdefault(room, set()).add(subscriber)
            subscriber.rooms.add(room)
        await self._ensure_redis()

    async def leave(self, subscriber: Subscriber, day: str) -> None:
        async with self._lock:
            self._remove(subscriber, room_name(day))

    async def disconnect(self, subscriber: Subscriber) -> set[str]:
        async with self._lock:
            rooms = set(subscriber.rooms)
            for room in rooms:
                self._remove(subscriber, room)
            self._connections.discard(subscriber)
        writer = subscriber.writer
        if writer is not None and writer is not asyncio.current_task():
            writer.cancel()
        return rooms

    def _remove(self, subscriber: Subscriber, room: str) -> None:
        members = self._rooms.get(room)
        if members is not None:
            members.discard(subscriber)
            if not members:
                self._rooms.pop(room, None)
        subscriber.rooms.discard(room)

    async def publish(
        self,
        day: str,
        event: str,
        data: dict[str, Any],
        *,
        exclude: str | None = None,
    ) -> int:
        """Fire-and-forget fan-out; returns how many local connections the event was queued for."""
        room = room_name(day)
        envelope = {"event": event, "data": data}
        exclude_id = exclude or None
        queued = await self._deliver(room, envelope, exclude_id)

        if await self._ensure_redis():
            message = json.dumps(
                {"origin": self._origin, "exclude": exclude_id, "room": room, "envelope": envelope},
                ensure_ascii=False,
                separators=(",", ":"),
            )
            try:
                if self._redis:
                    await self._redis.publish(self._channel, message)
            except Exception as exc:  # noqa: BLE001
                logger.warning("room event relay to redis failed: %s", exc)
        return queued

    async def _deliver(self, room: str, envelope: dict[str, Any], exclude_id: str | None) -> int:
        async with self._lock:
            members = [sub for sub in self._rooms.get(room, ()) if sub.connection_id != exclude_id]
        for subscriber in members:
            subscriber.push(envelope)
        return len(members)

    async def _write(self, subscriber: Subscriber) -> None:
        while True:
            envelope = await subscriber.outbox.get()
            try:
                await subscriber.send(envelope)
            except Exception as exc:  # noqa: BLE001
                logger.warning("dropping subscriber %s: %s", subscriber.connection_id, exc)
                await self.disconnect(subscriber)
                return
            finally:
                subscriber.outbox.task_done()

    async def _ensure_redis(self) -> bool:
        if not self._redis_url:
            return False
        if self._redis is None:
            async with self._redis_lock:
                if self._redis is None:
                    self._redis = redis.from_url(self._redis_url, decode_responses=True)
        await self._ensure_listener()
        return True

    async def _ensure_listener(self) -> None:
        if self._listener_task and not self._listener_task.done():
            return
        loop = asyncio.get_running_loop()
        if self._listener_failed_at is not None and loop.time() - self._listener_failed_at < RELAY_RETRY_SECONDS:
            return
        self._listener_task = asyncio.create_task(self._listen())

    async def _listen(self) -> None:
        if not self._redis:
            return
        pubsub = self._redis.pubsub()
        try:
            await pubsub.subscribe(self._channel)
            self._listener_failed_at = None
            async for message in pubsub.listen():
                if not message or message.get("type") != "message":
                    continue
                await self._relay(message.get("data"))
        except asyncio.CancelledError:
            raise
        except Exception:  # noqa: BLE001
            self._listener_failed_at = asyncio.get_running_loop().time()
            logger.exception("room relay listener stopped")
        finally:
            await pubsub.close()

    async def _relay(self, raw: Any) -> None:
        if isinstance(raw, bytes):
            raw = raw.decode()
        if not isinstance(raw, str):
            return
        try:
            message = json.loads(raw)
        except ValueError:
            return
        if message.get("origin") == self._origin:
            return
        room = message.get("room")
        envelope = message.get("envelope")
        if isinstance(room, str) and isinstance(envelope, dict):
            await self._deliver(room, envelope, message.get("exclude"))

    async def close(self) -> None:
        writers = [sub.writer for sub in self._connections if sub.writer is not None]
        self._connections.clear()
        for writer in writers:
            writer.cancel()
        await asyncio.gather(*writers, return_exceptions=True)
        if self._listener_task and not self._listener_task.done():
            self._listener_task.cancel()
            try:
                await self._listener_task
            except asyncio.CancelledError:
                pass
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


async def announce_slot_change(
    hub: DateRoomHub,
    *,
    booked_day: str,
    booked_slot: str,
    freed_day: str | None = None,
    freed_slot: str | None = None,
    exclude: str | None = None,
) -> None:
    """Publish slot-unbooked for the freed slot and slot-booked for the new one, independently."""
    if freed_day and freed_slot and (freed_day, freed_slot) != (booked_day, booked_slot):
        try:
            await hub.publish(
                freed_day,
                EVENT_SLOT_UNBOOKED,
                {"date": freed_day, "timeSlot": freed_slot},
                exclude=exclude,
            )
        except Exception:  # noqa: BLE001
            logger.exception("slot-unbooked broadcast failed for %s", freed_day)
    try:
        await hub.publish(
            booked_day,
            EVENT_SLOT_BOOKED,
            {"date": booked_day, "timeSlot": booked_slot},
            exclude=exclude,
        )
    except Exception:  # noqa: BLE001
        logger.exception("slot-booked broadcast failed for %s", booked_day)
