from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from slot_booking.core.config import settings

_LABEL_RE = re.compile(r"^(\d{2}):(\d{2}) - (\d{2}):(\d{2})$")


@dataclass(frozen=True)
class SlotDefinition:
    label: str
    start_offset: timedelta
    end_offset: timedelta

    @property
    def start_time(self) -> time:
        minutes = int(self.start_offset.total_seconds() // 60)
        return time(minutes // 60, minutes % 60)


def _hhmm(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def generate_slots(start_hour: int, end_hour: int, slot_minutes: int, gap_minutes: int) -> list[SlotDefinition]:
    """
    Fixed bookable windows for one day.

    Walks from ``start_hour`` in steps of ``slot_minutes + gap_minutes`` and stops at the first
    slot that would end after ``end_hour``. Labels cover the slot only, not the trailing gap.
    """
    if slot_minutes <= 0:
        raise ValueError("slot_minutes must be positive")
    if gap_minutes < 0:
        raise ValueError("gap_minutes must not be negative")

    slots: list[SlotDefinition] = []
    current = start_hour * 60
    end = end_hour * 60
    while current + slot_minutes <= end:
        slot_end = current + slot_minutes
        slots.append(
            SlotDefinition(
                label=f"{_hhmm(current)} - {_hhmm(slot_end)}",
                start_offset=timedelta(minutes=current),
                end_offset=timedelta(minutes=slot_end),
            )
        )
        current += slot_minutes + gap_minutes
    return slots


def default_catalog() -> list[SlotDefinition]:
    return generate_slots(
        settings.slot_start_hour,
        settings.slot_end_hour,
        settings.slot_minutes,
        settings.slot_gap_minutes,
    )


def parse_slot_label(label: str) -> tuple[int, int]:
    """Return (start, end) minutes past midnight for a ``HH:MM - HH:MM`` label."""
    match = _LABEL_RE.match((label or "").strip())
    if not match:
        raise ValueError(f"Invalid slot label: {label!r}")
    sh, sm, eh, em = (int(part) for part in match.groups())
    if sh > 23 or eh > 24 or sm > 59 or em > 59:
        raise ValueError(f"Invalid slot label: {label!r}")
    start, end = sh * 60 + sm, eh * 60 + em
    if end <= start:
        raise ValueError(f"Invalid slot label: {label!r}")
    return start, end


def find_slot(catalog: list[SlotDefinition], label: str) -> SlotDefinition | None:
    wanted = (label or "").strip()
    for slot in catalog:
        if slot.label == wanted:
            return slot
    return None


def slot_start_instant(day: date, slot: SlotDefinition, tz: ZoneInfo) -> datetime:
    return datetime.combine(day, slot.start_time, tzinfo=tz)


def slot_end_instant(day: date, slot: SlotDefinition, tz: ZoneInfo) -> datetime:
    return slot_start_instant(day, slot, tz) + (slot.end_offset - slot.start_offset)


def is_bookable_date(day: date, allowed: list[date]) -> bool:
    # An empty list means no date restriction.
    return not allowed or day in allowed
