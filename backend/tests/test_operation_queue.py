from __future__ import annotations

import json
import unittest
from datetime import datetime, timedelta

from sqlalchemy import select

from factories import add_user
from slot_booking.models.booking import Booking
from slot_booking.models.event import BookingEvent
from slot_booking.models.operation_retry import OperationRetry
from slot_booking.services.operation_queue import (
    BASE_RETRY_SECONDS,
    MAX_RETRY_SECONDS,
    OP_MEETING_DELETE,
    OP_MEETING_UPDATE,
    STATUS_DEAD,
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_SUCCEEDED,
    enqueue_operation,
    process_due_operations,
    retry_delay_seconds,
)


class OperationQueueRetryPolicyTests(unittest.TestCase):
    def test_retry_backoff_starts_at_base_delay(self) -> None:
        self.assertEqual(retry_delay_seconds(1), BASE_RETRY_SECONDS)
        self.assertEqual(retry_delay_seconds(0), BASE_RETRY_SECONDS)
        self.assertEqual(retry_delay_seconds(-3), BASE_RETRY_SECONDS)

    def test_retry_backoff_is_exponential_and_capped(self) -> None:
        self.assertEqual(retry_delay_seconds(2), BASE_RETRY_SECONDS * 2)
        self.assertEqual(retry_delay_seconds(3), BASE_RETRY_SECONDS * 4)
        self.assertEqual(retry_delay_seconds(20), MAX_RETRY_SECONDS)

    def test_retry_backoff_is_non_decreasing(self) -> None:
        delays = [retry_delay_seconds(i) for i in range(1, 12)]
        self.assertListEqual(delays, sorted(delays))


async def test_enqueue_is_idempotent_by_key(db_session):
    first = await enqueue_operation(
        db_session,
        operation_type=OP_MEETING_DELETE,
        payload={"provider": "fake", "meeting_id": "m-1"},
        idempotency_key="meeting_delete:fake:m-1",
    )
    second = await enqueue_operation(
        db_session,
        operation_type=OP_MEETING_DELETE,
        payload={"provider": "fake", "meeting_id": "m-1"},
        idempotency_key="meeting_delete:fake:m-1",
    )
    await db_session.commit()

    assert first.operation_retry_id == second.operation_retry_id
    rows = (await db_session.execute(select(OperationRetry))).scalars().all()
    assert len(rows) == 1
    assert rows[0].status == STATUS_PENDING


async def test_due_delete_succeeds_and_is_logged(db_session, fake_provider):
    await enqueue_operation(
        db_session,
        operation_type=OP_MEETING_DELETE,
        payload={"provider": "fake", "meeting_id": "m-7"},
    )
    await db_session.commit()

    summary = await process_due_operations(db_session, provider=fake_provider)

    assert summary == {"picked": 1, "succeeded": 1, "failed": 0, "dead": 0}
    assert fake_provider.deleted == ["m-7"]
    row = (await db_session.execute(select(OperationRetry))).scalars().one()
    assert row.status == STATUS_SUCCEEDED
    assert row.attempts == 1
    actions = (await db_session.execute(select(BookingEvent.action_type))).scalars().all()
    assert "operation_retry_succeeded" in actions


async def test_failed_delete_backs_off_then_goes_dead(db_session, fake_provider):
    fake_provider.fail_delete = True
    await enqueue_operation(
        db_session,
        operation_type=OP_MEETING_DELETE,
        payload={"provider": "fake", "meeting_id": "m-8"},
        max_attempts=2,
    )
    await db_session.commit()

    summary = await process_due_operations(db_session, provider=fake_provider)
    assert summary["failed"] == 1
    row = (await db_session.execute(select(OperationRetry))).scalars().one()
    assert row.status == STATUS_FAILED
    assert row.next_retry_at - row.updated_at == timedelta(seconds=BASE_RETRY_SECONDS)
    assert "delete rejected" in row.last_error

    # Not due yet.
    summary = await process_due_operations(db_session, provider=fake_provider)
    assert summary["picked"] == 0

    row.next_retry_at = datetime.utcnow() - timedelta(seconds=1)
    await db_session.commit()
    summary = await process_due_operations(db_session, provider=fake_provider)
    assert summary["dead"] == 1
    assert row.status == STATUS_DEAD
    assert row.completed_at is not None


async def test_delete_for_another_provider_is_not_sent(db_session, fake_provider):
    await enqueue_operation(
        db_session,
        operation_type=OP_MEETING_DELETE,
        payload={"provider": "zoom", "meeting_id": "123"},
    )
    await db_session.commit()

    summary = await process_due_operations(db_session, provider=fake_provider)

    assert summary["failed"] == 1
    assert fake_provider.deleted == []


async def test_update_uses_current_booking_times(db_session, fake_provider):
    await add_user(db_session, "u-1")
    booking = Booking(
        user_id="u-1",
        meeting_date=datetime(2030, 1, 14, 17, 0),
        time_slot="09:00 - 09:10",
        scheduled_start_at=datetime(2030, 1, 15, 2, 0),
        scheduled_end_at=datetime(2030, 1, 15, 2, 20),
        duration_minutes=20,
        status="scheduled",
        queue_number=1,
        meeting_provider="fake",
        external_meeting_id="m-3",
    )
    db_session.add(booking)
    await db_session.flush()
    await enqueue_operation(
        db_session,
        operation_type=OP_MEETING_UPDATE,
        payload={
            "provider": "fake",
            "meeting_id": "m-3",
            "booking_id": booking.booking_id,
            "start_at": "2030-01-15T01:00:00+00:00",
            "duration_minutes": 10,
            "timezone": "Asia/Bangkok",
        },
    )
    await db_session.commit()

    summary = await process_due_operations(db_session, provider=fake_provider)

    assert summary["succeeded"] == 1
    meeting_id, start_at, duration = fake_provider.updated[0]
    assert meeting_id == "m-3"
    assert start_at.replace(tzinfo=None) == datetime(2030, 1, 15, 2, 0)
    assert duration == 20


async def test_update_for_replaced_meeting_is_skipped(db_session, fake_provider):
    await add_user(db_session, "u-2")
    booking = Booking(
        user_id="u-2",
        meeting_date=datetime(2030, 1, 14, 17, 0),
        time_slot="09:00 - 09:10",
        scheduled_start_at=datetime(2030, 1, 15, 2, 0),
        scheduled_end_at=datetime(2030, 1, 15, 2, 10),
        duration_minutes=10,
        status="scheduled",
        meeting_provider="fake",
        external_meeting_id="m-new",
    )
    db_session.add(booking)
    await db_session.flush()
    operation = await enqueue_operation(
        db_session,
        operation_type=OP_MEETING_UPDATE,
        payload={
            "provider": "fake",
            "meeting_id": "m-old",
            "booking_id": booking.booking_id,
            "start_at": "2030-01-15T01:00:00Z",
            "duration_minutes": 10,
        },
    )
    await db_session.commit()

    summary = await process_due_operations(db_session, provider=fake_provider)

    assert summary["succeeded"] == 1
    assert fake_provider.updated == []
    assert json.loads(operation.payload_json)["meeting_id"] == "m-old"


if __name__ == "__main__":
    unittest.main()
