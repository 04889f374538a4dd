from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Sequence

from learning.models import (
    LogEntry,
    Memory,
    MemoryDetailLevel,
    MemoryKey,
    MemoryKind,
    TrackedItem,
    clean_display_name,
    normalize_key,
)
from learning.store import MemoryStore, get_min_occurrences

logger = logging.getLogger(__name__)

# causes logged up to a day before a symptom count as a delayed correlation
CORRELATION_WINDOW = timedelta(hours=24)
# an unrated treatment is judged by the next log of the same symptom inside this window
RESOLUTION_FOLLOW_UP_WINDOW = timedelta(hours=72)
SEVERE_SEVERITY = 4
# 1-10 self rating; above the cutoff counts as helped
SUCCESS_RATING_CUTOFF = 5
NORMAL_PRESSURE = "normal"

# weaker pattern sources need more support before they surface
PATTERN_EXTRA_OCCURRENCES = {
    "time": 1,
    "pressure": 0,
    "moon": 1,
    "season": 2,
}

_KINDS_BY_LEVEL = {
    MemoryDetailLevel.MINIMAL: frozenset({MemoryKind.TRIGGER}),
    MemoryDetailLevel.PATTERNS: frozenset(
        {
            MemoryKind.TRIGGER,
            MemoryKind.WHAT_WORKED,
            MemoryKind.WHAT_DIDNT_WORK,
            MemoryKind.PATTERN,
            MemoryKind.CORRELATION,
        }
    ),
    MemoryDetailLevel.FULL: frozenset(MemoryKind),
}


@dataclass
class RebuildSummary:
    entries_seen: int
    entries_skipped: int
    memories_tracked: int
    memories_visible: int

    def to_dict(self) -> dict[str, int]:
        return {
            "entries_seen": self.entries_seen,
            "entries_skipped": self.entries_skipped,
            "memories_tracked": self.memories_tracked,
            "memories_visible": self.memories_visible,
        }


# running counters for one identifying tuple while scanning the log
@dataclass
class _Aggregate:
    kind: MemoryKind
    trigger: str | None = None
    symptom: str | None = None
    resolution: str | None = None
    notes: str | None = None
    required_occurrences: int = 1
    occurrence_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    severe_occurrence_count: int = 0
    first_observed_at: datetime | None = None
    last_observed_at: datetime | None = None

    def observe(self, at: datetime, severity: int | None) -> None:
        self.occurrence_count += 1
        if severity is not None and severity >= SEVERE_SEVERITY:
            self.severe_occurrence_count += 1
        if self.first_observed_at is None or at < self.first_observed_at:
            self.first_observed_at = at
        if self.last_observed_at is None or at > self.last_observed_at:
            self.last_observed_at = at


def resolve_detail_level(value: Any) -> MemoryDetailLevel:
    if isinstance(value, MemoryDetailLevel):
        return value
    normalized = str(value or "").strip().lower()
    # "detailed" is the older name for the full level
    if normalized == "detailed":
        return MemoryDetailLevel.FULL
    try:
        return MemoryDetailLevel(normalized)
    except ValueError:
        logger.warning("Unrecognized memory detail level %r; using patterns", value)
        return MemoryDetailLevel.PATTERNS


def default_detail_level() -> MemoryDetailLevel:
    return resolve_detail_level(os.getenv("MEMORY_DETAIL_LEVEL_DEFAULT", MemoryDetailLevel.PATTERNS.value))


def _as_utc(value: Any) -> datetime | None:
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _usable_entries(logs: Iterable[LogEntry] | None) -> tuple[list[tuple[datetime, LogEntry]], int]:
    usable: list[tuple[datetime, LogEntry]] = []
    skipped = 0
    for entry in logs or ():
        logged_at = _as_utc(getattr(entry, "logged_at", None))
        if logged_at is None:
            skipped += 1
            continue
        usable.append((logged_at, entry))
    usable.sort(key=lambda row: row[0])
    if skipped:
        logger.warning("Skipped %d log entries without a usable date", skipped)
    return usable, skipped


def _unique_names(values: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for value in values:
        display = clean_display_name(value)
        key = normalize_key(display)
        if display is None or key is None or key in seen:
            continue
        seen.add(key)
        out.append(display)
    return out


def _tracked_item_index(treatments: Iterable[TrackedItem]) -> dict[str, TrackedItem]:
    index: dict[str, TrackedItem] = {}
    for item in treatments or ():
        key = normalize_key(item.name)
        if key is not None and key not in index:
            index[key] = item
    return index


def _resolution_name(resolution: str | None, tracked: dict[str, TrackedItem]) -> str | None:
    display = clean_display_name(resolution)
    key = normalize_key(display)
    if key is None:
        return None
    item = tracked.get(key)
    return clean_display_name(item.name) if item is not None else display


def _time_of_day(at: datetime) -> str:
    hour = at.hour
    if 5 <= hour < 12:
        return "Morning"
    if 12 <= hour < 17:
        return "Afternoon"
    if 17 <= hour < 21:
        return "Evening"
    return "Night"


def _rating_outcome(rating: int | None) -> bool | None:
    if rating is None:
        return None
    return int(rating) > SUCCESS_RATING_CUTOFF


def _follow_up_outcome(
    entries: Sequence[tuple[datetime, LogEntry]],
    index: int,
    symptom: str,
) -> bool | None:
    logged_at, entry = entries[index]
    for next_at, next_entry in entries[index + 1:]:
        if next_at - logged_at > RESOLUTION_FOLLOW_UP_WINDOW:
            break
        if next_entry.has_symptom(symptom):
            return next_entry.severity < entry.severity
    return None


def _aggregate(
    aggregates: dict[tuple[Any, ...], _Aggregate],
    key: tuple[Any, ...],
    **kwargs: Any,
) -> _Aggregate:
    candidate = aggregates.get(key)
    if candidate is None:
        candidate = _Aggregate(**kwargs)
        aggregates[key] = candidate
    return candidate


def _mine_triggers(entries: Sequence[tuple[datetime, LogEntry]], aggregates: dict) -> None:
    for logged_at, entry in entries:
        symptoms = _unique_names(entry.symptoms)
        for cause in _unique_names(entry.causes):
            for symptom in symptoms:
                if normalize_key(cause) == normalize_key(symptom):
                    continue
                candidate = _aggregate(
                    aggregates,
                    ("trigger", normalize_key(cause), normalize_key(symptom)),
                    kind=MemoryKind.TRIGGER,
                    trigger=cause,
                    symptom=symptom,
                )
                candidate.observe(logged_at, entry.severity)


def _mine_effectiveness(
    entries: Sequence[tuple[datetime, LogEntry]],
    tracked: dict[str, TrackedItem],
    aggregates: dict,
) -> None:
    for index, (logged_at, entry) in enumerate(entries):
        resolution = _resolution_name(entry.resolution, tracked)
        if resolution is None:
            continue
        rated = _rating_outcome(entry.resolution_effectiveness)
        for symptom in _unique_names(entry.symptoms):
            helped = rated if rated is not None else _follow_up_outcome(entries, index, symptom)
            if helped is None:
                continue
            candidate = _aggregate(
                aggregates,
                ("effectiveness", normalize_key(resolution), normalize_key(symptom)),
                kind=MemoryKind.WHAT_WORKED,
                resolution=resolution,
                symptom=symptom,
            )
            candidate.observe(logged_at, entry.severity)
            if helped:
                candidate.success_count += 1
            else:
                candidate.failure_count += 1


def _pattern_factors(logged_at: datetime, entry: LogEntry) -> list[tuple[str, str, str]]:
    # (source, factor label, notes template)
    factors = [("time", f"Time of day: {_time_of_day(logged_at)}", "{symptom} often occurs in the " + _time_of_day(logged_at).lower())]
    pressure = clean_display_name(entry.atmospheric_pressure)
    if pressure and normalize_key(pressure) != NORMAL_PRESSURE:
        factors.append(("pressure", f"Pressure: {pressure}", "{symptom} often occurs during " + pressure.lower() + " pressure"))
    moon = clean_display_name(entry.moon_phase)
    if moon:
        factors.append(("moon", f"Moon: {moon}", "{symptom} observed during " + moon))
    season = clean_display_name(entry.season)
    if season:
        factors.append(("season", f"Season: {season}", "{symptom} more common in " + season.lower()))
    return factors


def _mine_patterns(entries: Sequence[tuple[datetime, LogEntry]], aggregates: dict, min_occurrences: int) -> None:
    for logged_at, entry in entries:
        symptoms = _unique_names(entry.symptoms)
        if not symptoms:
            continue
        # bucket by the wall clock the entry was logged in
        local_at = entry.logged_at if isinstance(entry.logged_at, datetime) else logged_at
        for source, label, notes_template in _pattern_factors(local_at, entry):
            for symptom in symptoms:
                candidate = _aggregate(
                    aggregates,
                    ("pattern", normalize_key(label), normalize_key(symptom)),
                    kind=MemoryKind.PATTERN,
                    trigger=label,
                    symptom=symptom,
                    notes=notes_template.format(symptom=symptom),
                    required_occurrences=min_occurrences + PATTERN_EXTRA_OCCURRENCES[source],
                )
                candidate.observe(logged_at, entry.severity)


def _mine_correlations(entries: Sequence[tuple[datetime, LogEntry]], aggregates: dict) -> None:
    window_start = 0
    for index, (logged_at, entry) in enumerate(entries):
        symptoms = _unique_names(entry.symptoms)
        if not symptoms:
            continue
        while entries[window_start][0] < logged_at - CORRELATION_WINDOW:
            window_start += 1
        seen: set[tuple[str, str]] = set()
        for earlier_at, earlier in entries[window_start:index]:
            if earlier_at >= logged_at:
                continue
            for cause in _unique_names(earlier.causes):
                if entry.has_cause(cause):
                    continue
                for symptom in symptoms:
                    pair = (normalize_key(cause), normalize_key(symptom))
                    if pair[0] == pair[1] or pair in seen:
                        continue
                    seen.add(pair)
                    candidate = _aggregate(
                        aggregates,
                        ("correlation",) + pair,
                        kind=MemoryKind.CORRELATION,
                        trigger=cause,
                        symptom=symptom,
                        notes=f"{cause} often precedes {symptom.lower()} within a day",
                    )
                    candidate.observe(logged_at, entry.severity)


def _mine_preferences(
    entries: Sequence[tuple[datetime, LogEntry]],
    tracked: dict[str, TrackedItem],
    aggregates: dict,
) -> None:
    for logged_at, entry in entries:
        key = normalize_key(entry.resolution)
        item = tracked.get(key) if key else None
        if item is None:
            continue
        item_type = clean_display_name(item.item_type) or "item"
        candidate = _aggregate(
            aggregates,
            ("preference", normalize_key(item_type)),
            kind=MemoryKind.PREFERENCE,
            resolution=item_type,
            notes=f"Usually reaches for a {item_type.lower()} when symptoms flare",
        )
        candidate.observe(logged_at, entry.severity)


def _carry_over(memory: Memory, previous: Memory | None) -> Memory:
    if previous is None:
        return memory
    memory.user_confirmed = previous.user_confirmed
    memory.user_denied = previous.user_denied
    memory.feedback_success_count = previous.feedback_success_count
    memory.feedback_failure_count = previous.feedback_failure_count
    if previous.user_denied or not previous.is_active:
        memory.is_active = False
    memory.created_at = previous.created_at
    return memory


def _has_user_state(memory: Memory) -> bool:
    return (
        memory.user_confirmed
        or memory.user_denied
        or not memory.is_active
        or memory.feedback_success_count > 0
        or memory.feedback_failure_count > 0
    )


def _materialize(candidate: _Aggregate, previous: MemoryStore | None) -> Memory:
    memory = Memory(
        kind=candidate.kind,
        trigger=candidate.trigger,
        symptom=candidate.symptom,
        resolution=candidate.resolution,
        occurrence_count=candidate.occurrence_count,
        success_count=candidate.success_count,
        failure_count=candidate.failure_count,
        severe_occurrence_count=candidate.severe_occurrence_count,
        notes=candidate.notes,
        last_observed_at=candidate.last_observed_at,
    )
    if candidate.first_observed_at is not None:
        memory.created_at = candidate.first_observed_at
    prior = previous.get_family(memory.key) if previous is not None else None
    memory = _carry_over(memory, prior)
    memory.settle_effectiveness_kind()
    if prior is not None and prior.key == memory.key:
        memory.memory_id = prior.memory_id
    return memory


def rebuild_memories(
    logs: Iterable[LogEntry] | None,
    treatments: Iterable[TrackedItem] = (),
    memory_detail_level: Any = MemoryDetailLevel.PATTERNS,
    *,
    previous: MemoryStore | None = None,
    min_occurrences: int | None = None,
) -> tuple[MemoryStore, RebuildSummary]:
    level = resolve_detail_level(memory_detail_level)
    kinds = _KINDS_BY_LEVEL[level]
    threshold = min_occurrences if min_occurrences is not None else (
        previous.min_occurrences if previous is not None else get_min_occurrences()
    )
    entries, skipped = _usable_entries(logs)
    tracked = _tracked_item_index(treatments)

    aggregates: dict[tuple[Any, ...], _Aggregate] = {}
    _mine_triggers(entries, aggregates)
    if MemoryKind.WHAT_WORKED in kinds:
        _mine_effectiveness(entries, tracked, aggregates)
    if MemoryKind.PATTERN in kinds:
        _mine_patterns(entries, aggregates, threshold)
    if MemoryKind.CORRELATION in kinds:
        _mine_correlations(entries, aggregates)
    if MemoryKind.PREFERENCE in kinds:
        _mine_preferences(entries, tracked, aggregates)

    store = MemoryStore(min_occurrences=threshold)
    for candidate in aggregates.values():
        if candidate.occurrence_count < candidate.required_occurrences:
            continue
        store.put(_materialize(candidate, previous))

    # keep user-asserted history even when the log no longer supports it
    if previous is not None:
        rebuilt_families = {memory.key.family for memory in store}
        for memory in previous:
            if memory.key.family in rebuilt_families or not _has_user_state(memory):
                continue
            store.put(memory)

    summary = RebuildSummary(
        entries_seen=len(entries) + skipped,
        entries_skipped=skipped,
        memories_tracked=len(store),
        memories_visible=len(store.visible()),
    )
    logger.info(
        "Rebuilt memories at %s level: %d tracked, %d visible from %d entries",
        level.value,
        summary.memories_tracked,
        summary.memories_visible,
        len(entries),
    )
    return store, summary


def build_memory_store(
    logs: Iterable[LogEntry] | None,
    treatments: Iterable[TrackedItem] = (),
    memory_detail_level: Any = MemoryDetailLevel.PATTERNS,
    *,
    previous: MemoryStore | None = None,
    min_occurrences: int | None = None,
) -> MemoryStore:
    store, _ = rebuild_memories(
        logs,
        treatments,
        memory_detail_level,
        previous=previous,
        min_occurrences=min_occurrences,
    )
    return store


def record_observation(
    entry: LogEntry,
    store: MemoryStore,
    treatments: Iterable[TrackedItem] = (),
    memory_detail_level: Any = MemoryDetailLevel.PATTERNS,
) -> list[Memory]:
    """Apply one newly logged entry to ``store`` without a full rebuild.

    Same-entry trigger pairs and self-rated resolutions are counted. Pairs
    seen for the first time become tentative count-1 memories, which stay
    invisible until they reach the store's minimum occurrences. Returns the
    memories that were created or touched.
    """
    logged_at = _as_utc(entry.logged_at)
    if logged_at is None:
        logger.warning("Ignoring observation without a usable date")
        return []
    kinds = _KINDS_BY_LEVEL[resolve_detail_level(memory_detail_level)]
    touched: list[Memory] = []
    symptoms = _unique_names(entry.symptoms)

    for cause in _unique_names(entry.causes):
        for symptom in symptoms:
            if normalize_key(cause) == normalize_key(symptom):
                continue
            key = MemoryKey.build(MemoryKind.TRIGGER, trigger=cause, symptom=symptom)
            memory = store.get(key)
            if memory is None:
                memory = store.put(
                    Memory(
                        kind=MemoryKind.TRIGGER,
                        trigger=cause,
                        symptom=symptom,
                        occurrence_count=0,
                        created_at=logged_at,
                    )
                )
            memory.occurrence_count += 1
            if entry.severity >= SEVERE_SEVERITY:
                memory.severe_occurrence_count += 1
            memory.last_observed_at = logged_at
            touched.append(memory)

    helped = _rating_outcome(entry.resolution_effectiveness)
    resolution = _resolution_name(entry.resolution, _tracked_item_index(treatments))
    if MemoryKind.WHAT_WORKED in kinds and resolution is not None and helped is not None:
        for symptom in symptoms:
            kind = MemoryKind.WHAT_WORKED if helped else MemoryKind.WHAT_DIDNT_WORK
            memory = store.get_family(MemoryKey.build(kind, resolution=resolution, symptom=symptom))
            if memory is None:
                memory = store.put(
                    Memory(
                        kind=kind,
                        resolution=resolution,
                        symptom=symptom,
                        occurrence_count=0,
                        created_at=logged_at,
                    )
                )
            previous_key = memory.key
            memory.occurrence_count += 1
            if helped:
                memory.success_count += 1
            else:
                memory.failure_count += 1
            memory.settle_effectiveness_kind()
            if memory.key != previous_key:
                store.rekey(previous_key, memory)
            if entry.severity >= SEVERE_SEVERITY:
                memory.severe_occurrence_count += 1
            memory.last_observed_at = logged_at
            touched.append(memory)

    logger.debug("Recorded observation touching %d memories", len(touched))
    return touched
