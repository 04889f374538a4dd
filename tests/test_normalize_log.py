from __future__ import annotations

import unittest
from datetime import datetime, timezone

from api.schemas import LogIn
from ingestion.normalize_log import NormalizationError, log_entry_from_row, normalize_log, normalize_names
from learning.builder import build_memory_store
from learning.models import MemoryKind


def _payload(**overrides) -> LogIn:
    data = {
        "user_id": 1,
        "logged_at": "2026-02-10T08:30:00Z",
        "symptoms": ["Headache"],
        "causes": ["Red wine"],
    }
    data.update(overrides)
    return LogIn(**data)


class NormalizeLogTests(unittest.TestCase):
    def test_minimal_payload_gets_defaults(self) -> None:
        normalized = normalize_log(_payload())
        self.assertEqual(normalized["logged_at"], "2026-02-10T08:30:00+00:00")
        self.assertEqual(normalized["severity"], 1)
        self.assertIsNone(normalized["resolution"])
        self.assertIsNone(normalized["notes"])

    def test_offsets_are_converted_to_utc(self) -> None:
        normalized = normalize_log(_payload(logged_at="2026-02-10T08:30:00-05:00"))
        self.assertEqual(normalized["logged_at"], "2026-02-10T13:30:00+00:00")
        self.assertEqual(normalized["utc_offset_minutes"], -300)

    def test_names_are_cleaned_and_deduped(self) -> None:
        normalized = normalize_log(_payload(symptoms=["  Headache ", "headache", "", "Neck   pain"]))
        self.assertEqual(normalized["symptoms"], ["Headache", "Neck pain"])

    def test_missing_timestamp_is_rejected(self) -> None:
        with self.assertRaises(NormalizationError):
            normalize_log(_payload(logged_at=None))
        with self.assertRaises(NormalizationError):
            normalize_log(_payload(logged_at="yesterday-ish"))

    def test_entry_needs_a_symptom_or_cause(self) -> None:
        with self.assertRaises(NormalizationError):
            normalize_log(_payload(symptoms=[], causes=["  "]))

    def test_cause_only_entry_is_allowed(self) -> None:
        normalized = normalize_log(_payload(symptoms=[]))
        self.assertEqual(normalized["causes"], ["Red wine"])

    def test_out_of_range_values_are_rejected(self) -> None:
        with self.assertRaises(NormalizationError):
            normalize_log(_payload(severity=6))
        with self.assertRaises(NormalizationError):
            normalize_log(_payload(resolution="Water", resolution_effectiveness=11))

    def test_rating_requires_resolution(self) -> None:
        with self.assertRaises(NormalizationError):
            normalize_log(_payload(resolution_effectiveness=7))

    def test_overlong_name_is_rejected(self) -> None:
        with self.assertRaises(NormalizationError):
            normalize_names(["x" * 200], field_name="causes")


class LogEntryFromRowTests(unittest.TestCase):
    def test_row_becomes_engine_entry(self) -> None:
        row = {
            "id": 9,
            "logged_at": datetime(2026, 2, 10, 8, 30, tzinfo=timezone.utc),
            "symptoms": ["Headache"],
            "causes": ["Red wine"],
            "severity": 4,
            "resolution": "Water",
            "resolution_effectiveness": 8,
            "season": "Winter",
        }
        entry = log_entry_from_row(row)
        self.assertEqual(entry.entry_id, 9)
        self.assertEqual(entry.symptoms, ("Headache",))
        self.assertEqual(entry.severity, 4)
        self.assertEqual(entry.resolution_effectiveness, 8)
        self.assertEqual(entry.season, "Winter")
        self.assertTrue(entry.has_cause("red wine"))

    def test_stored_offset_restores_local_clock(self) -> None:
        row = normalize_log(_payload(logged_at="2026-02-10T08:30:00+09:00"))
        entry = log_entry_from_row(row)
        self.assertEqual(entry.logged_at.hour, 8)
        self.assertEqual(entry.logged_at.utcoffset().total_seconds(), 9 * 3600)

    def test_time_of_day_patterns_use_the_local_clock(self) -> None:
        rows = [
            normalize_log(_payload(logged_at=f"2026-01-0{day}T08:00:00-05:00", causes=[]))
            for day in range(1, 5)
        ]
        store = build_memory_store([log_entry_from_row(row) for row in rows], min_occurrences=2)
        labels = [memory.trigger for memory in store if memory.kind == MemoryKind.PATTERN]
        self.assertIn("Time of day: Morning", labels)
        self.assertNotIn("Time of day: Afternoon", labels)

    def test_bad_date_becomes_none(self) -> None:
        entry = log_entry_from_row({"logged_at": "not a date", "symptoms": ["Rash"]})
        self.assertIsNone(entry.logged_at)
        self.assertEqual(entry.severity, 1)


if __name__ == "__main__":
    unittest.main()
