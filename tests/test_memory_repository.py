from __future__ import annotations

import unittest
from datetime import datetime, timezone

from api.repositories.memories import (
    get_memory,
    list_memories,
    load_memory_store,
    replace_memory_store,
    save_memories,
)
from learning.models import Memory, MemoryKey, MemoryKind
from learning.store import MemoryStore
from tests.db_test_utils import reset_test_database

SEEN_AT = datetime(2026, 1, 5, 9, tzinfo=timezone.utc)


def _trigger(trigger: str = "Dairy", symptom: str = "Bloating", count: int = 3, **kwargs) -> Memory:
    return Memory(
        kind=MemoryKind.TRIGGER,
        trigger=trigger,
        symptom=symptom,
        occurrence_count=count,
        last_observed_at=SEEN_AT,
        **kwargs,
    )


class MemoryRepositoryTests(unittest.TestCase):
    def setUp(self) -> None:
        reset_test_database()

    def test_save_then_load_round_trips_counts_and_flags(self) -> None:
        memory = _trigger(severe_occurrence_count=1, user_confirmed=True)
        saved = save_memories(1, [memory])
        self.assertIsNotNone(saved[0].memory_id)

        store = load_memory_store(1, min_occurrences=2)
        loaded = store.get(MemoryKey.build(MemoryKind.TRIGGER, trigger="dairy", symptom="bloating"))
        self.assertIsNotNone(loaded)
        self.assertEqual(loaded.memory_id, saved[0].memory_id)
        self.assertEqual(loaded.occurrence_count, 3)
        self.assertEqual(loaded.severe_occurrence_count, 1)
        self.assertTrue(loaded.user_confirmed)
        self.assertEqual(loaded.last_observed_at, SEEN_AT)
        self.assertAlmostEqual(loaded.confidence_score, memory.confidence_score)

    def test_saving_same_key_twice_updates_one_row(self) -> None:
        save_memories(1, [_trigger(count=2)])
        save_memories(1, [_trigger(count=5)])
        memories = list_memories(1, min_occurrences=2)
        self.assertEqual(len(memories), 1)
        self.assertEqual(memories[0].occurrence_count, 5)

    def test_kind_flip_rewrites_the_same_row(self) -> None:
        remedy = Memory(
            kind=MemoryKind.WHAT_WORKED,
            resolution="Ibuprofen",
            symptom="Headache",
            occurrence_count=2,
            success_count=2,
        )
        memory_id = save_memories(1, [remedy])[0].memory_id

        remedy.feedback_failure_count = 3
        remedy.settle_effectiveness_kind()
        save_memories(1, [remedy])

        reloaded = get_memory(1, memory_id)
        self.assertEqual(reloaded.kind, MemoryKind.WHAT_DIDNT_WORK)
        self.assertEqual(reloaded.feedback_failure_count, 3)
        self.assertEqual(len(load_memory_store(1)), 1)

    def test_replace_removes_rows_the_rebuild_dropped(self) -> None:
        save_memories(1, [_trigger(), _trigger(trigger="Coffee", symptom="Headache")])
        store = load_memory_store(1, min_occurrences=2)
        store.remove(MemoryKey.build(MemoryKind.TRIGGER, trigger="Coffee", symptom="Headache"))

        replace_memory_store(1, store)

        keys = [memory.key.as_string() for memory in load_memory_store(1)]
        self.assertEqual(keys, ["trigger|dairy|bloating|"])

    def test_replace_with_empty_store_clears_user(self) -> None:
        save_memories(1, [_trigger()])
        save_memories(2, [_trigger()])
        replace_memory_store(1, MemoryStore(min_occurrences=2))
        self.assertEqual(len(load_memory_store(1)), 0)
        self.assertEqual(len(load_memory_store(2)), 1)

    def test_get_memory_is_scoped_to_user(self) -> None:
        memory_id = save_memories(1, [_trigger()])[0].memory_id
        with self.assertRaisesRegex(ValueError, "memory_not_found"):
            get_memory(2, memory_id)

    def test_list_memories_filters_kind_and_inactive(self) -> None:
        save_memories(
            1,
            [
                _trigger(),
                _trigger(trigger="Gluten", count=4, is_active=False),
                Memory(kind=MemoryKind.WHAT_WORKED, resolution="Tea", symptom="Bloating", occurrence_count=2, success_count=2),
            ],
        )
        triggers = list_memories(1, kind=MemoryKind.TRIGGER, min_occurrences=2)
        self.assertEqual([m.trigger for m in triggers], ["Dairy"])
        with_inactive = list_memories(1, kind=MemoryKind.TRIGGER, include_inactive=True, min_occurrences=2)
        self.assertEqual({m.trigger for m in with_inactive}, {"Dairy", "Gluten"})


if __name__ == "__main__":
    unittest.main()
