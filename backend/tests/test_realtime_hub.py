import asyncio
import json

import pytest

from slot_booking.services.realtime import (
    EVENT_SLOT_BOOKED,
    EVENT_SLOT_UNBOOKED,
    OUTBOX_SIZE,
    DateRoomHub,
    announce_slot_change,
)

DAY = "2030-01-15"
NEXT_DAY = "2030-01-16"


class Inbox:
    def __init__(self, *, broken: bool = False) -> None:
        self.messages: list[dict] = []
        self.broken = broken

    async def send(self, message: dict) -> None:
        if self.broken:
            raise RuntimeError("socket closed")
        self.messages.append(message)


class StalledInbox:
    """A peer that never finishes reading."""

    def __init__(self) -> None:
        self.never = asyncio.Event()

    async def send(self, message: dict) -> None:
        await self.never.wait()


class FailingHub(DateRoomHub):
    def __init__(self, failing_event: str) -> None:
        super().__init__()
        self.failing_event = failing_event

    async def publish(self, day, event, data, *, exclude=None):
        if event == self.failing_event:
            raise RuntimeError("publish failed")
        return await super().publish(day, event, data, exclude=exclude)


@pytest.fixture
async def hub():
    rooms = DateRoomHub()
    yield rooms
    await rooms.close()


async def _subscribe(hub: DateRoomHub, inbox, *days: str):
    subscriber = hub.register(inbox.send, user_id="u")
    for day in days:
        await hub.join(subscriber, day)
    return subscriber


async def _flush(*subscribers) -> None:
    for subscriber in subscribers:
        await asyncio.wait_for(subscriber.outbox.join(), 1.0)


async def test_publish_skips_the_originating_connection(hub):
    origin_inbox, peer_inbox = Inbox(), Inbox()
    origin = await _subscribe(hub, origin_inbox, DAY)
    peer = await _subscribe(hub, peer_inbox, DAY)

    queued = await hub.publish(DAY, EVENT_SLOT_BOOKED, {"date": DAY, "timeSlot": "08:00 - 08:10"}, exclude=origin.connection_id)
    await _flush(origin, peer)

    assert queued == 1
    assert origin_inbox.messages == []
    assert peer_inbox.messages == [{"event": EVENT_SLOT_BOOKED, "data": {"date": DAY, "timeSlot": "08:00 - 08:10"}}]


async def test_events_stay_inside_their_date_room(hub):
    today, tomorrow = Inbox(), Inbox()
    first = await _subscribe(hub, today, DAY)
    second = await _subscribe(hub, tomorrow, NEXT_DAY)

    await hub.publish(DAY, EVENT_SLOT_BOOKED, {"date": DAY, "timeSlot": "08:00 - 08:10"})
    await _flush(first, second)

    assert len(today.messages) == 1
    assert tomorrow.messages == []


async def test_failed_send_drops_only_that_subscriber(hub):
    healthy, broken = Inbox(), Inbox(broken=True)
    healthy_sub = await _subscribe(hub, healthy, DAY)
    broken_sub = await _subscribe(hub, broken, DAY)

    await hub.publish(DAY, EVENT_SLOT_BOOKED, {"date": DAY, "timeSlot": "08:00 - 08:10"})
    await _flush(healthy_sub)
    await asyncio.wait_for(broken_sub.writer, 1.0)

    assert len(healthy.messages) == 1
    assert hub.room_size(DAY) == 1
    assert broken_sub.rooms == set()


async def test_stalled_peer_does_not_hold_up_the_room(hub):
    await _subscribe(hub, StalledInbox(), DAY)
    inboxes = [Inbox() for _ in range(5)]
    healthy = [await _subscribe(hub, inbox, DAY) for inbox in inboxes]

    queued = await asyncio.wait_for(hub.publish(DAY, EVENT_SLOT_BOOKED, {"date": DAY, "timeSlot": "08:00 - 08:10"}), 1.0)
    await _flush(*healthy)

    assert queued == 6
    assert all(len(inbox.messages) == 1 for inbox in inboxes)


async def test_stalled_outbox_stays_bounded(hub):
    stalled = await _subscribe(hub, StalledInbox(), DAY)

    for minute in range(OUTBOX_SIZE + 3):
        await hub.publish(DAY, EVENT_SLOT_BOOKED, {"date": DAY, "timeSlot": f"n-{minute}"})

    assert stalled.outbox.qsize() <= OUTBOX_SIZE


async def test_leave_and_disconnect_remove_membership(hub):
    inbox = Inbox()
    subscriber = await _subscribe(hub, inbox, DAY, NEXT_DAY)

    await hub.leave(subscriber, DAY)
    assert hub.room_size(DAY) == 0
    assert hub.room_size(NEXT_DAY) == 1

    rooms = await hub.disconnect(subscriber)
    assert rooms == {f"date-{NEXT_DAY}"}
    assert hub.room_size(NEXT_DAY) == 0
    await asyncio.gather(subscriber.writer, return_exceptions=True)
    assert subscriber.writer.cancelled()


async def test_announce_frees_the_previous_slot_before_booking_the_new_one(hub):
    old_room, new_room = Inbox(), Inbox()
    first = await _subscribe(hub, old_room, DAY)
    second = await _subscribe(hub, new_room, NEXT_DAY)

    await announce_slot_change(
        hub,
        booked_day=NEXT_DAY,
        booked_slot="08:15 - 08:25",
        freed_day=DAY,
        freed_slot="08:00 - 08:10",
    )
    await _flush(first, second)

    assert old_room.messages == [{"event": EVENT_SLOT_UNBOOKED, "data": {"date": DAY, "timeSlot": "08:00 - 08:10"}}]
    assert new_room.messages == [{"event": EVENT_SLOT_BOOKED, "data": {"date": NEXT_DAY, "timeSlot": "08:15 - 08:25"}}]


async def test_announce_same_slot_only_sends_booked(hub):
    inbox = Inbox()
    subscriber = await _subscribe(hub, inbox, DAY)

    await announce_slot_change(hub, booked_day=DAY, booked_slot="08:00 - 08:10", freed_day=DAY, freed_slot="08:00 - 08:10")
    await _flush(subscriber)

    assert [message["event"] for message in inbox.messages] == [EVENT_SLOT_BOOKED]


async def test_failed_unbooked_publish_still_sends_booked():
    hub = FailingHub(EVENT_SLOT_UNBOOKED)
    inbox = Inbox()
    subscriber = await _subscribe(hub, inbox, DAY)

    await announce_slot_change(hub, booked_day=DAY, booked_slot="08:15 - 08:25", freed_day=DAY, freed_slot="08:00 - 08:10")
    await _flush(subscriber)

    assert inbox.messages == [{"event": EVENT_SLOT_BOOKED, "data": {"date": DAY, "timeSlot": "08:15 - 08:25"}}]
    await hub.close()


async def test_failed_booked_publish_still_sends_unbooked():
    hub = FailingHub(EVENT_SLOT_BOOKED)
    inbox = Inbox()
    subscriber = await _subscribe(hub, inbox, DAY)

    await announce_slot_change(hub, booked_day=DAY, booked_slot="08:15 - 08:25", freed_day=DAY, freed_slot="08:00 - 08:10")
    await _flush(subscriber)

    assert inbox.messages == [{"event": EVENT_SLOT_UNBOOKED, "data": {"date": DAY, "timeSlot": "08:00 - 08:10"}}]
    await hub.close()


async def test_relay_ignores_own_messages_and_delivers_foreign_ones(hub):
    inbox = Inbox()
    subscriber = await _subscribe(hub, inbox, DAY)
    envelope = {"event": EVENT_SLOT_BOOKED, "data": {"date": DAY, "timeSlot": "08:00 - 08:10"}}

    await hub._relay(json.dumps({"origin": hub._origin, "room": f"date-{DAY}", "envelope": envelope}))
    await _flush(subscriber)
    assert inbox.messages == []

    await hub._relay(json.dumps({"origin": "other", "room": f"date-{DAY}", "envelope": envelope, "exclude": None}))
    await hub._relay(
        json.dumps({"origin": "other", "room": f"date-{DAY}", "envelope": envelope, "exclude": subscriber.connection_id})
    )
    await hub._relay("not json")
    await _flush(subscriber)

    assert inbox.messages == [envelope]


async def test_listener_restart_backs_off_after_a_failure():
    hub = DateRoomHub(redis_url="redis://localhost:1/0")
    hub._listener_failed_at = asyncio.get_running_loop().time()

    await hub._ensure_listener()

    assert hub._listener_task is None
    await hub.close()
