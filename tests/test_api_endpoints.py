from __future__ import annotations

import unittest

from fastapi import HTTPException

from api.main import (
    check_food_safety,
    create_allergy,
    create_log,
    create_tracked_item,
    get_memories,
    get_memory_summary,
    rebuild_user_memories,
    submit_memory_feedback,
)
from api.schemas import AllergyIn, FoodCheckIn, LogIn, MemoryFeedbackIn, RebuildIn, TrackedItemIn
from tests.db_test_utils import reset_test_database


def _log(day: int, **kwargs) -> dict:
    kwargs.setdefault("symptoms", [])
    kwargs.setdefault("causes", [])
    return create_log(LogIn(user_id=1, logged_at=f"2026-01-{day:02d}T09:00:00Z", **kwargs))


class LogEndpointTests(unittest.TestCase):
    def setUp(self) -> None:
        reset_test_database()

    def test_first_log_asks_about_cold_symptom(self) -> None:
        result = _log(1, symptoms=["Bloating"], causes=["Dairy"], severity=2)
        self.assertEqual(result["symptoms"], ["Bloating"])
        self.assertEqual(result["insights"]["warnings"], [])
        self.assertEqual(len(result["insights"]["questions"]), 1)
        self.assertIsNone(result["cloud_text"])
        self.assertEqual(result["insights"]["needs_more_data"]["symptom"], "Bloating")

    def test_repeated_trigger_warns_on_later_exposure(self) -> None:
        _log(1, symptoms=["Bloating"], causes=["Dairy"])
        _log(3, symptoms=["bloating"], causes=["dairy"])

        result = _log(5, causes=["Dairy"])

        warnings = result["insights"]["warnings"]
        self.assertEqual(len(warnings), 1)
        self.assertEqual(warnings[0]["trigger"], "Dairy")
        self.assertEqual(warnings[0]["severity"], "caution")
        self.assertTrue(result["insights"]["has_content"])

    def test_invalid_log_is_rejected(self) -> None:
        with self.assertRaises(HTTPException) as ctx:
            create_log(LogIn(user_id=1, logged_at="2026-01-01T09:00:00Z", severity=9, symptoms=["Rash"]))
        self.assertEqual(ctx.exception.status_code, 400)
        with self.assertRaises(HTTPException) as ctx:
            create_log(LogIn(user_id=1, symptoms=["Rash"]))
        self.assertEqual(ctx.exception.status_code, 400)

    def test_rated_resolution_uses_tracked_item_name(self) -> None:
        create_tracked_item(TrackedItemIn(user_id=1, name="Ibuprofen", item_type="medication"))
        _log(1, symptoms=["Headache"], resolution="ibuprofen", resolution_effectiveness=8)
        _log(4, symptoms=["Headache"], resolution="IBUPROFEN", resolution_effectiveness=7)

        memories = get_memories(user_id=1, kind="whatWorked", include_inactive=False)
        self.assertEqual(len(memories), 1)
        self.assertEqual(memories[0]["resolution"], "Ibuprofen")
        self.assertEqual(memories[0]["effectiveness_percentage"], 100)

        result = _log(6, symptoms=["Headache"])
        suggestions = result["insights"]["suggestions"]
        self.assertEqual([s["resolution"] for s in suggestions], ["Ibuprofen"])


class MemoryEndpointTests(unittest.TestCase):
    def setUp(self) -> None:
        reset_test_database()
        _log(1, symptoms=["Bloating"], causes=["Dairy"])
        _log(3, symptoms=["Bloating"], causes=["Dairy"])
        _log(6, symptoms=["Bloating"], causes=["Dairy"], severity=4)

    def _dairy(self) -> dict:
        triggers = get_memories(user_id=1, kind="trigger", include_inactive=True)
        return next(m for m in triggers if m["trigger"] == "Dairy")

    def test_unknown_kind_is_rejected(self) -> None:
        with self.assertRaises(HTTPException) as ctx:
            get_memories(user_id=1, kind="hunch", include_inactive=False)
        self.assertEqual(ctx.exception.status_code, 400)

    def test_rebuild_matches_incremental_counts(self) -> None:
        before = self._dairy()
        summary = rebuild_user_memories(RebuildIn(user_id=1))
        after = self._dairy()

        self.assertEqual(summary["entries_seen"], 3)
        self.assertEqual(summary["memory_detail_level"], "patterns")
        self.assertGreaterEqual(summary["memories_visible"], 1)
        self.assertEqual(after["occurrence_count"], before["occurrence_count"])
        self.assertEqual(after["occurrence_count"], 3)

    def test_rebuild_stores_detail_level(self) -> None:
        summary = rebuild_user_memories(RebuildIn(user_id=1, memory_detail_level="minimal"))
        self.assertEqual(summary["memory_detail_level"], "minimal")
        again = rebuild_user_memories(RebuildIn(user_id=1))
        self.assertEqual(again["memory_detail_level"], "minimal")

    def test_deny_silences_warning_and_survives_rebuild(self) -> None:
        dairy = self._dairy()
        denied = submit_memory_feedback(dairy["id"], MemoryFeedbackIn(user_id=1, feedback="deny"))
        self.assertTrue(denied["user_denied"])
        self.assertFalse(denied["is_active"])
        self.assertEqual(denied["confidence_score"], 0.0)

        rebuild_user_memories(RebuildIn(user_id=1))
        self.assertTrue(self._dairy()["user_denied"])

        result = _log(8, causes=["Dairy"])
        self.assertEqual(result["insights"]["warnings"], [])

    def test_confirm_raises_confidence(self) -> None:
        dairy = self._dairy()
        confirmed = submit_memory_feedback(dairy["id"], MemoryFeedbackIn(user_id=1, feedback="confirm"))
        self.assertTrue(confirmed["user_confirmed"])
        self.assertGreater(confirmed["confidence_score"], dairy["confidence_score"])

    def test_outcome_feedback_on_trigger_is_rejected(self) -> None:
        dairy = self._dairy()
        with self.assertRaises(HTTPException) as ctx:
            submit_memory_feedback(dairy["id"], MemoryFeedbackIn(user_id=1, feedback="helped"))
        self.assertEqual(ctx.exception.status_code, 400)

    def test_summary_describes_learned_trigger(self) -> None:
        summary = get_memory_summary(user_id=1)
        self.assertEqual(summary["user_id"], 1)
        self.assertIn("Dairy may trigger bloating (medium confidence)", summary["triggers"])
        self.assertIn("- Dairy may trigger bloating", summary["text"])

    def test_summary_for_new_user_is_still_learning(self) -> None:
        summary = get_memory_summary(user_id=2)
        self.assertEqual(summary["triggers"], [])
        self.assertTrue(summary["text"].startswith("I'm still learning"))

    def test_feedback_for_missing_memory_is_not_found(self) -> None:
        with self.assertRaises(HTTPException) as ctx:
            submit_memory_feedback(999999, MemoryFeedbackIn(user_id=1, feedback="confirm"))
        self.assertEqual(ctx.exception.status_code, 404)


class FoodCheckEndpointTests(unittest.TestCase):
    def setUp(self) -> None:
        reset_test_database()

    def test_allergy_cross_reaction(self) -> None:
        create_allergy(AllergyIn(user_id=1, name="Shellfish", known_reactions=["Hives"]))
        result = check_food_safety(FoodCheckIn(user_id=1, food_name="Shrimp"))
        self.assertEqual(result["status"], "caution")
        self.assertEqual(result["cross_reaction_source"], "Shellfish")

    def test_exact_allergy_is_avoid(self) -> None:
        create_allergy(AllergyIn(user_id=1, name="Peanuts", severity="severe", helpful_medications=["EpiPen"]))
        result = check_food_safety(FoodCheckIn(user_id=1, food_name="peanuts"))
        self.assertEqual(result["status"], "avoid")
        self.assertIn("Keep EpiPen available", result["additional_notes"])

    def test_learned_trigger_needs_caution(self) -> None:
        _log(1, symptoms=["Heartburn"], causes=["Spicy food"])
        _log(2, symptoms=["Heartburn"], causes=["Spicy food"])
        _log(3, symptoms=["Heartburn"], causes=["Spicy food"])
        result = check_food_safety(FoodCheckIn(user_id=1, food_name="Spicy food"))
        self.assertEqual(result["status"], "caution")
        self.assertEqual(result["memory_key"], "trigger|spicy food|heartburn|")

    def test_unknown_food_is_safe(self) -> None:
        result = check_food_safety(FoodCheckIn(user_id=1, food_name="Rice"))
        self.assertEqual(result["status"], "safe")


if __name__ == "__main__":
    unittest.main()
