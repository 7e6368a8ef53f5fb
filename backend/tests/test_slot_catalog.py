from __future__ import annotations

import unittest
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from slot_booking.services.slot_catalog import (
    find_slot,
    generate_slots,
    is_bookable_date,
    parse_slot_label,
    slot_end_instant,
    slot_start_instant,
)


class SlotCatalogGenerationTests(unittest.TestCase):
    def test_default_day_starts_at_eight_and_steps_by_fifteen_minutes(self) -> None:
        slots = generate_slots(8, 22, 10, 5)
        labels = [slot.label for slot in slots]
        self.assertEqual(labels[:3], ["08:00 - 08:10", "08:15 - 08:25", "08:30 - 08:40"])
        self.assertEqual(labels[-1], "21:45 - 21:55")
        self.assertEqual(len(slots), 56)

    def test_no_slot_ends_after_the_end_hour(self) -> None:
        for slot in generate_slots(8, 22, 10, 5):
            self.assertLessEqual(slot.end_offset, timedelta(hours=22))

    def test_labels_are_unique(self) -> None:
        labels = [slot.label for slot in generate_slots(8, 22, 10, 5)]
        self.assertEqual(len(labels), len(set(labels)))

    def test_window_that_does_not_divide_evenly_drops_the_partial_slot(self) -> None:
        labels = [slot.label for slot in generate_slots(8, 9, 10, 5)]
        self.assertEqual(labels, ["08:00 - 08:10", "08:15 - 08:25", "08:30 - 08:40", "08:45 - 08:55"])

    def test_empty_window_yields_no_slots(self) -> None:
        self.assertEqual(generate_slots(10, 10, 10, 5), [])

    def test_invalid_lengths_are_rejected(self) -> None:
        with self.assertRaises(ValueError):
            generate_slots(8, 22, 0, 5)
        with self.assertRaises(ValueError):
            generate_slots(8, 22, 10, -1)


class SlotLabelTests(unittest.TestCase):
    def test_parse_label_returns_minutes_past_midnight(self) -> None:
        self.assertEqual(parse_slot_label("08:15 - 08:25"), (495, 505))

    def test_parse_label_rejects_malformed_values(self) -> None:
        for label in ("8:15 - 8:25", "08:15-08:25", "08:25 - 08:15", "25:00 - 25:10", ""):
            with self.subTest(label=label):
                with self.assertRaises(ValueError):
                    parse_slot_label(label)

    def test_find_slot_matches_exact_label_only(self) -> None:
        catalog = generate_slots(8, 22, 10, 5)
        self.assertIsNotNone(find_slot(catalog, "08:15 - 08:25"))
        self.assertIsNotNone(find_slot(catalog, " 08:15 - 08:25 "))
        self.assertIsNone(find_slot(catalog, "08:10 - 08:20"))


class SlotInstantTests(unittest.TestCase):
    def test_slot_start_is_local_wall_clock_time(self) -> None:
        tz = ZoneInfo("Asia/Bangkok")
        slot = find_slot(generate_slots(8, 22, 10, 5), "08:00 - 08:10")
        start = slot_start_instant(date(2030, 1, 15), slot, tz)
        self.assertEqual(start.astimezone(timezone.utc), datetime(2030, 1, 15, 1, 0, tzinfo=timezone.utc))
        self.assertEqual(slot_end_instant(date(2030, 1, 15), slot, tz) - start, timedelta(minutes=10))

    def test_empty_date_list_allows_any_date(self) -> None:
        self.assertTrue(is_bookable_date(date(2030, 1, 15), []))
        self.assertTrue(is_bookable_date(date(2030, 1, 15), [date(2030, 1, 15)]))
        self.assertFalse(is_bookable_date(date(2030, 1, 16), [date(2030, 1, 15)]))


if __name__ == "__main__":
    unittest.main()
