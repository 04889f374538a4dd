# keyed, serializable collection of memories
# one record per identifying tuple; below-threshold records are kept but never surfaced

from __future__ import annotations

import os
from datetime import datetime
from typing import Any, Iterable, Iterator

from learning.models import Memory, MemoryKey, MemoryKind, normalize_key

DEFAULT_MIN_OCCURRENCES = 2


def get_min_occurrences() -> int:
    raw = os.getenv("MEMORY_MIN_OCCURRENCES", str(DEFAULT_MIN_OCCURRENCES))
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return DEFAULT_MIN_OCCURRENCES
    return max(1, value)


def _parse_dt(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def memory_to_record(memory: Memory) -> dict[str, Any]:
    return {
        "id": memory.memory_id,
        "memory_key": memory.key.as_string(),
        "kind": memory.kind.value,
        "trigger": memory.trigger,
        "symptom": memory.symptom,
        "resolution": memory.resolution,
        "occurrence_count": memory.occurrence_count,
        "success_count": memory.success_count,
        "failure_count": memory.failure_count,
        "feedback_success_count": memory.feedback_success_count,
        "feedback_failure_count": memory.feedback_failure_count,
        "severe_occurrence_count": memory.severe_occurrence_count,
        "user_confirmed": memory.user_confirmed,
        "user_denied": memory.user_denied,
        "is_active": memory.is_active,
        "notes": memory.notes,
        "confidence_score": memory.confidence_score,
        "last_observed_at": memory.last_observed_at.isoformat() if memory.last_observed_at else None,
        "created_at": memory.created_at.isoformat(),
    }


def memory_from_record(record: dict[str, Any]) -> Memory:
    memory = Memory(
        kind=MemoryKind(record["kind"]),
        trigger=record.get("trigger"),
        symptom=record.get("symptom"),
        resolution=record.get("resolution"),
        occurrence_count=int(record.get("occurrence_count") or 0),
        success_count=int(record.get("success_count") or 0),
        failure_count=int(record.get("failure_count") or 0),
        feedback_success_count=int(record.get("feedback_success_count") or 0),
        feedback_failure_count=int(record.get("feedback_failure_count") or 0),
        severe_occurrence_count=int(record.get("severe_occurrence_count") or 0),
        user_confirmed=bool(record.get("user_confirmed")),
        user_denied=bool(record.get("user_denied")),
        is_active=bool(record.get("is_active", True)),
        notes=record.get("notes"),
        last_observed_at=_parse_dt(record.get("last_observed_at")),
        memory_id=record.get("id"),
    )
    created_at = _parse_dt(record.get("created_at"))
    if created_at is not None:
        memory.created_at = created_at
    return memory


class MemoryStore:
    def __init__(self, memories: Iterable[Memory] = (), *, min_occurrences: int | None = None) -> None:
        self.min_occurrences = max(1, int(min_occurrences)) if min_occurrences is not None else get_min_occurrences()
        self._memories: dict[MemoryKey, Memory] = {}
        for memory in memories:
            self.put(memory)

    def __len__(self) -> int:
        return len(self._memories)

    def __iter__(self) -> Iterator[Memory]:
        return iter(list(self._memories.values()))

    def __contains__(self, key: object) -> bool:
        return key in self._memories

    def put(self, memory: Memory) -> Memory:
        existing = self._memories.get(memory.key)
        if existing is not None and memory.memory_id is None:
            memory.memory_id = existing.memory_id
        self._memories[memory.key] = memory
        return memory

    def remove(self, key: MemoryKey) -> Memory | None:
        return self._memories.pop(key, None)

    # re-file a memory whose kind moved within its effectiveness family
    def rekey(self, old_key: MemoryKey, memory: Memory) -> Memory:
        self._memories.pop(old_key, None)
        return self.put(memory)

    def get(self, key: MemoryKey) -> Memory | None:
        return self._memories.get(key)

    # effectiveness memories flip between whatWorked/whatDidntWork as evidence shifts
    def get_family(self, key: MemoryKey) -> Memory | None:
        exact = self._memories.get(key)
        if exact is not None:
            return exact
        family = key.family
        for candidate_key, memory in self._memories.items():
            if candidate_key.family == family:
                return memory
        return None

    def get_by_id(self, memory_id: int) -> Memory | None:
        for memory in self._memories.values():
            if memory.memory_id == memory_id:
                return memory
        return None

    def is_visible(self, memory: Memory) -> bool:
        return (
            memory.is_active
            and not memory.user_denied
            and memory.occurrence_count >= self.min_occurrences
        )

    def visible(self, kind: MemoryKind | None = None) -> list[Memory]:
        return [
            memory
            for memory in self._memories.values()
            if self.is_visible(memory) and (kind is None or memory.kind == kind)
        ]

    def visible_for_symptom(self, symptom: str) -> list[Memory]:
        symptom_key = normalize_key(symptom)
        return [memory for memory in self.visible() if memory.key.symptom == symptom_key]

    def active_triggers(self) -> list[Memory]:
        return self.visible(MemoryKind.TRIGGER)

    # still under the threshold and not dismissed by the user
    def tentative_for_symptom(self, symptom: str) -> list[Memory]:
        symptom_key = normalize_key(symptom)
        return [
            memory
            for memory in self._memories.values()
            if memory.key.symptom == symptom_key
            and memory.is_active
            and not memory.user_denied
            and memory.occurrence_count < self.min_occurrences
        ]

    def browse(self, kind: MemoryKind | None = None, *, include_inactive: bool = False) -> list[Memory]:
        rows = [
            memory
            for memory in self._memories.values()
            if (kind is None or memory.kind == kind)
            and (self.is_visible(memory) or (include_inactive and not memory.is_active))
        ]
        return sorted(
            rows,
            key=lambda memory: (-memory.confidence_score, -memory.occurrence_count, memory.key.as_string()),
        )

    def to_records(self) -> list[dict[str, Any]]:
        return [memory_to_record(memory) for memory in sorted(self._memories.values(), key=lambda m: m.key.as_string())]

    @classmethod
    def from_records(cls, records: Iterable[dict[str, Any]], *, min_occurrences: int | None = None) -> MemoryStore:
        return cls((memory_from_record(record) for record in records), min_occurrences=min_occurrences)
