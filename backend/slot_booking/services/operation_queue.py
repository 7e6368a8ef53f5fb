from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from slot_booking.models.booking import Booking
from slot_booking.models.operation_retry import OperationRetry
from slot_booking.services.events import log_event
from slot_booking.services.meeting_provider import MeetingProvider

STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_FAILED = "failed"
STATUS_SUCCEEDED = "succeeded"
STATUS_DEAD = "dead"

DEFAULT_MAX_ATTEMPTS = 5
BASE_RETRY_SECONDS = 5 * 60
MAX_RETRY_SECONDS = 6 * 60 * 60

OP_MEETING_DELETE = "meeting_delete"
OP_MEETING_UPDATE = "meeting_update"


def retry_delay_seconds(attempt_number: int) -> int:
    # attempt_number starts at 1 (first failed execution).
    attempt = max(int(attempt_number), 1)
    delay = BASE_RETRY_SECONDS * (2 ** (attempt - 1))
    return min(delay, MAX_RETRY_SECONDS)


def _json_dumps(payload: dict[str, Any]) -> str:
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":"))


def _json_loads(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError("Operation payload must be an object")
    return data


def _parse_datetime_utc(raw: str | None) -> datetime:
    if not raw or not isinstance(raw, str):
        raise ValueError("Missing datetime value")
    value = raw.strip()
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


async def enqueue_operation(
    session: AsyncSession,
    *,
    operation_type: str,
    payload: dict[str, Any],
    user_id: str | None = None,
    booking_id: int | None = None,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    idempotency_key: str | None = None,
) -> OperationRetry:
    if not operation_type or not operation_type.strip():
        raise ValueError("operation_type is required")

    operation_type = operation_type.strip().lower()
    if max_attempts < 1:
        max_attempts = DEFAULT_MAX_ATTEMPTS

    if idempotency_key:
        existing = (
            await session.execute(select(OperationRetry).where(OperationRetry.idempotency_key == idempotency_key))
        ).scalars().first()
        if existing:
            return existing

    now = datetime.utcnow()
    operation = OperationRetry(
        operation_type=operation_type,
        status=STATUS_PENDING,
        user_id=user_id,
        booking_id=booking_id,
        payload_json=_json_dumps(payload),
        idempotency_key=idempotency_key,
        attempts=0,
        max_attempts=max_attempts,
        next_retry_at=now,
        created_at=now,
        updated_at=now,
    )
    session.add(operation)
    await session.flush()

    await log_event(
        session,
        action_type="operation_retry_enqueued",
        user_id=user_id,
        booking_id=booking_id,
        meta_json={
            "operation_retry_id": operation.operation_retry_id,
            "operation_type": operation_type,
            "idempotency_key": idempotency_key,
        },
    )
    return operation


def _require_provider(payload: dict[str, Any], provider: MeetingProvider) -> str:
    meeting_id = str(payload.get("meeting_id") or "").strip()
    if not meeting_id:
        raise ValueError("missing meeting_id")
    owner = str(payload.get("provider") or "").strip()
    if owner and owner != provider.name:
        raise ValueError(f"meeting belongs to provider {owner!r}, active provider is {provider.name!r}")
    return meeting_id


async def _execute_meeting_delete(payload: dict[str, Any], provider: MeetingProvider) -> None:
    meeting_id = _require_provider(payload, provider)
    await provider.delete_meeting(meeting_id)


async def _execute_meeting_update(session: AsyncSession, payload: dict[str, Any], provider: MeetingProvider) -> None:
    meeting_id = _require_provider(payload, provider)
    start_at = _parse_datetime_utc(payload.get("start_at"))
    duration = int(payload.get("duration_minutes") or 0)
    tz = str(payload.get("timezone") or "UTC")

    booking_id = payload.get("booking_id")
    booking = await session.get(Booking, int(booking_id)) if booking_id is not None else None
    if booking is not None:
        if booking.external_meeting_id != meeting_id:
            # Meeting was replaced or cancelled since the update was queued.
            return
        start_at = booking.scheduled_start_at.replace(tzinfo=timezone.utc)
        duration = booking.duration_minutes

    if duration < 1:
        raise ValueError("invalid duration_minutes")
    await provider.update_meeting(meeting_id, start_at=start_at, duration_minutes=duration, timezone=tz)


async def execute_operation(session: AsyncSession, operation: OperationRetry, provider: MeetingProvider) -> None:
    payload = _json_loads(operation.payload_json)
    op_type = (operation.operation_type or "").strip().lower()

    if op_type == OP_MEETING_DELETE:
        await _execute_meeting_delete(payload, provider)
        return
    if op_type == OP_MEETING_UPDATE:
        await _execute_meeting_update(session, payload, provider)
        return

    raise ValueError(f"Unsupported operation_type: {op_type}")


async def process_due_operations(session: AsyncSession, *, provider: MeetingProvider, limit: int = 50) -> dict[str, int]:
    now = datetime.utcnow()
    rows = (
        await session.execute(
            select(OperationRetry)
            .where(
                OperationRetry.status.in_([STATUS_PENDING, STATUS_FAILED]),
                OperationRetry.next_retry_at <= now,
                OperationRetry.attempts < OperationRetry.max_attempts,
            )
            .order_by(OperationRetry.next_retry_at.asc(), OperationRetry.operation_retry_id.asc())
            .limit(limit)
        )
    ).scalars().all()

    summary = {"picked": len(rows), "succeeded": 0, "failed": 0, "dead": 0}

    for operation in rows:
        operation.status = STATUS_PROCESSING
        operation.updated_at = datetime.utcnow()
        await session.flush()

        try:
            await execute_operation(session, operation, provider)
            operation.attempts += 1
            operation.status = STATUS_SUCCEEDED
            operation.last_error = None
            operation.completed_at = datetime.utcnow()
            operation.updated_at = operation.completed_at
            await log_event(
                session,
                action_type="operation_retry_succeeded",
                user_id=operation.user_id,
                booking_id=operation.booking_id,
                meta_json={
                    "operation_retry_id": operation.operation_retry_id,
                    "operation_type": operation.operation_type,
                    "attempts": operation.attempts,
                },
            )
            summary["succeeded"] += 1
        except Exception as exc:  # noqa: BLE001
            operation.attempts += 1
            operation.last_error = str(exc)[:2000]
            operation.updated_at = datetime.utcnow()
            if operation.attempts >= operation.max_attempts:
                operation.status = STATUS_DEAD
                operation.completed_at = operation.updated_at
                summary["dead"] += 1
            else:
                operation.status = STATUS_FAILED
                operation.next_retry_at = operation.updated_at + timedelta(seconds=retry_delay_seconds(operation.attempts))
                summary["failed"] += 1

            await log_event(
                session,
                action_type="operation_retry_failed",
                user_id=operation.user_id,
                booking_id=operation.booking_id,
                meta_json={
                    "operation_retry_id": operation.operation_retry_id,
                    "operation_type": operation.operation_type,
                    "attempts": operation.attempts,
                    "max_attempts": operation.max_attempts,
                    "status": operation.status,
                    "error": operation.last_error,
                    "next_retry_at": operation.next_retry_at.isoformat() if operation.next_retry_at else None,
                },
            )

        await session.commit()

    return summary
