from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any

from learning.models import ConfidenceLevel, LogEntry, Memory, MemoryKind, clean_display_name, normalize_key
from learning.store import MemoryStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_QUESTIONS = 2
MAX_WARNINGS = 2
MAX_OBSERVATIONS = 3
MAX_SUGGESTIONS = 2
SUMMARY_MAX_TRIGGERS = 5
SUMMARY_MAX_REMEDIES = 5
SUMMARY_MAX_PATTERNS = 3

STILL_LEARNING_TEXT = (
    "I'm still learning about your patterns. Keep logging your symptoms and what you try, "
    "and I'll start noticing correlations!"
)


class WarningSeverity(str, Enum):
    ALERT = "alert"
    CAUTION = "caution"


_SEVERITY_ORDER = {WarningSeverity.ALERT: 0, WarningSeverity.CAUTION: 1}


@dataclass(frozen=True)
class InsightWarning:
    severity: WarningSeverity
    trigger: str
    symptom: str
    text: str
    confidence_level: ConfidenceLevel
    confidence_score: float
    occurrence_count: int
    memory_key: str
    memory_id: int | None = None


@dataclass(frozen=True)
class Observation:
    kind: MemoryKind
    symptom: str
    text: str
    confidence_level: ConfidenceLevel
    confidence_score: float
    occurrence_count: int
    memory_key: str
    memory_id: int | None = None


@dataclass(frozen=True)
class Suggestion:
    resolution: str
    symptom: str
    text: str
    effectiveness_percentage: int
    occurrence_count: int
    memory_key: str
    memory_id: int | None = None


@dataclass(frozen=True)
class Question:
    text: str
    options: tuple[str, ...]
    relates_to: str
    symptom: str
    context: str | None = None


@dataclass(frozen=True)
class NeedsMoreData:
    text: str
    data_needed: tuple[str, ...]
    current_progress: str | None = None
    symptom: str | None = None


def _item_dict(item: Any) -> dict[str, Any]:
    data = asdict(item)
    for key, value in data.items():
        if isinstance(value, Enum):
            data[key] = value.value
        elif isinstance(value, tuple):
            data[key] = list(value)
    return data


@dataclass
class Response:
    warnings: list[InsightWarning] = field(default_factory=list)
    observations: list[Observation] = field(default_factory=list)
    suggestions: list[Suggestion] = field(default_factory=list)
    questions: list[Question] = field(default_factory=list)
    needs_more_data: NeedsMoreData | None = None

    @property
    def has_content(self) -> bool:
        return bool(
            self.warnings or self.observations or self.suggestions or self.questions or self.needs_more_data
        )

    # lists are already ranked, so trimming keeps the head of each
    def trimmed(
        self,
        *,
        max_warnings: int = MAX_WARNINGS,
        max_observations: int = MAX_OBSERVATIONS,
        max_suggestions: int = MAX_SUGGESTIONS,
        max_questions: int = DEFAULT_MAX_QUESTIONS,
    ) -> Response:
        return replace(
            self,
            warnings=self.warnings[:max_warnings],
            observations=self.observations[:max_observations],
            suggestions=self.suggestions[:max_suggestions],
            questions=self.questions[:max_questions],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "warnings": [_item_dict(item) for item in self.warnings],
            "observations": [_item_dict(item) for item in self.observations],
            "suggestions": [_item_dict(item) for item in self.suggestions],
            "questions": [_item_dict(item) for item in self.questions],
            "needs_more_data": _item_dict(self.needs_more_data) if self.needs_more_data else None,
            "has_content": self.has_content,
        }


def get_max_questions() -> int:
    raw = os.getenv("INSIGHT_MAX_QUESTIONS", str(DEFAULT_MAX_QUESTIONS))
    try:
        return max(0, int(raw))
    except (TypeError, ValueError):
        return DEFAULT_MAX_QUESTIONS


def _entry_symptoms(entry: LogEntry) -> list[str]:
    seen: set[str] = set()
    symptoms = []
    for symptom in entry.symptoms:
        display = clean_display_name(symptom)
        key = normalize_key(display)
        if key is None or key in seen:
            continue
        seen.add(key)
        symptoms.append(display)
    return symptoms


def _build_warnings(entry: LogEntry, store: MemoryStore) -> list[InsightWarning]:
    warnings = []
    for memory in store.active_triggers():
        if not entry.has_cause(memory.trigger) or entry.has_symptom(memory.symptom):
            continue
        if memory.confidence_level.rank < ConfidenceLevel.MEDIUM.rank:
            continue
        severity = WarningSeverity.ALERT if memory.severe_occurrence_count > 0 else WarningSeverity.CAUTION
        warnings.append(
            InsightWarning(
                severity=severity,
                trigger=memory.trigger,
                symptom=memory.symptom,
                text=f"{memory.trigger} has triggered {memory.symptom.lower()} before (seen {memory.occurrence_count} times).",
                confidence_level=memory.confidence_level,
                confidence_score=memory.confidence_score,
                occurrence_count=memory.occurrence_count,
                memory_key=memory.key.as_string(),
                memory_id=memory.memory_id,
            )
        )
    warnings.sort(key=lambda w: (_SEVERITY_ORDER[w.severity], -w.confidence_score, w.trigger.lower(), w.symptom.lower()))
    return warnings


def _observation_text(memory: Memory) -> str:
    if memory.notes:
        return memory.notes
    if memory.kind == MemoryKind.CORRELATION:
        return f"{memory.trigger} often precedes {memory.symptom.lower()}"
    return f"{memory.symptom} tends to show up with {memory.trigger.lower()}"


def _build_observations(symptoms: list[str], store: MemoryStore) -> list[Observation]:
    observations = []
    for symptom in symptoms:
        for memory in store.visible_for_symptom(symptom):
            if memory.kind not in (MemoryKind.PATTERN, MemoryKind.CORRELATION):
                continue
            observations.append(
                Observation(
                    kind=memory.kind,
                    symptom=memory.symptom,
                    text=_observation_text(memory),
                    confidence_level=memory.confidence_level,
                    confidence_score=memory.confidence_score,
                    occurrence_count=memory.occurrence_count,
                    memory_key=memory.key.as_string(),
                    memory_id=memory.memory_id,
                )
            )
    observations.sort(key=lambda o: (-o.confidence_score, -o.occurrence_count, o.memory_key))
    return observations


def _build_suggestions(entry: LogEntry, symptoms: list[str], store: MemoryStore) -> list[Suggestion]:
    if clean_display_name(entry.resolution):
        return []
    suggestions = []
    for symptom in symptoms:
        for memory in store.visible_for_symptom(symptom):
            if memory.kind != MemoryKind.WHAT_WORKED:
                continue
            percentage = memory.effectiveness_percentage
            suggestions.append(
                Suggestion(
                    resolution=memory.resolution,
                    symptom=memory.symptom,
                    text=f"Last time you had {memory.symptom.lower()}, {memory.resolution} helped ({percentage}% of the time).",
                    effectiveness_percentage=percentage,
                    occurrence_count=memory.occurrence_count,
                    memory_key=memory.key.as_string(),
                    memory_id=memory.memory_id,
                )
            )
    suggestions.sort(key=lambda s: (-s.effectiveness_percentage, -s.occurrence_count, s.resolution.lower()))
    return suggestions


def _questions_for(symptom: str) -> list[Question]:
    key = normalize_key(symptom) or ""
    questions = []
    if "fatigue" in key or "headache" in key:
        questions.append(Question(
            text="How was your sleep last night?",
            options=("Less than 6 hrs", "6-7 hrs", "7-8 hrs", "8+ hrs"),
            relates_to="sleep",
            symptom=symptom,
            context="Sleep often correlates with this symptom",
        ))
    if "anxiety" in key or "stress" in key:
        questions.append(Question(
            text="How's your stress level today?",
            options=("Low", "Moderate", "High", "Very High"),
            relates_to="stress",
            symptom=symptom,
        ))
    if "dizz" in key or "headache" in key:
        questions.append(Question(
            text="Have you had enough water today?",
            options=("Yes, plenty", "Some", "Not much", "Barely any"),
            relates_to="hydration",
            symptom=symptom,
            context="Dehydration can cause headaches and dizziness",
        ))
    if questions:
        return questions
    return [Question(
        text=f"Did anything unusual happen before your {symptom.lower()} started?",
        options=("Yes", "No", "Not sure"),
        relates_to="general",
        symptom=symptom,
    )]


def _build_questions(symptoms: list[str], store: MemoryStore, limit: int) -> list[Question]:
    questions: list[Question] = []
    asked: set[str] = set()
    for symptom in symptoms:
        if store.visible_for_symptom(symptom):
            continue
        for question in _questions_for(symptom):
            # one question per topic even when several cold symptoms share it
            topic = question.text if question.relates_to == "general" else question.relates_to
            if topic in asked:
                continue
            asked.add(topic)
            questions.append(question)
    return questions[:limit]


def _build_needs_more_data(symptoms: list[str], store: MemoryStore) -> NeedsMoreData | None:
    for symptom in symptoms:
        if store.visible_for_symptom(symptom):
            continue
        occurrences = max((memory.occurrence_count for memory in store.tentative_for_symptom(symptom)), default=0)
        progress = None
        if occurrences > 0:
            progress = f"{occurrences} of ~{store.min_occurrences} logs for reliable patterns"
        return NeedsMoreData(
            text=(
                f"I don't have enough data about your {symptom.lower()} yet to identify patterns. "
                "I'll keep tracking as you log."
            ),
            data_needed=(f"More {symptom.lower()} logs", "Potential trigger info", "What helped or didn't"),
            current_progress=progress,
            symptom=symptom,
        )
    return None


def generate(entry: LogEntry, store: MemoryStore, *, max_questions: int | None = None) -> Response:
    """Build the ranked response shown right after ``entry`` is logged.

    Read-only: the store is not touched, so promoting the entry into
    tentative memories is a separate step (``learning.builder.record_observation``)
    the caller runs afterwards.
    """
    symptoms = _entry_symptoms(entry)
    limit = get_max_questions() if max_questions is None else max(0, max_questions)
    response = Response(
        warnings=_build_warnings(entry, store),
        observations=_build_observations(symptoms, store),
        suggestions=_build_suggestions(entry, symptoms, store),
        questions=_build_questions(symptoms, store, limit),
        needs_more_data=_build_needs_more_data(symptoms, store),
    )
    logger.debug(
        "Generated %d warnings, %d observations, %d suggestions, %d questions",
        len(response.warnings),
        len(response.observations),
        len(response.suggestions),
        len(response.questions),
    )
    return response


@dataclass(frozen=True)
class MemorySummary:
    triggers: tuple[str, ...] = ()
    what_helps: tuple[str, ...] = ()
    patterns: tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not (self.triggers or self.what_helps or self.patterns)

    @property
    def text(self) -> str:
        if self.is_empty:
            return STILL_LEARNING_TEXT
        sections = []
        for title, lines in (("Triggers", self.triggers), ("What helps", self.what_helps), ("Patterns", self.patterns)):
            if lines:
                sections.append("\n".join([f"{title}:"] + [f"- {line}" for line in lines]))
        return "Based on your logs, I've learned:\n\n" + "\n\n".join(sections)

    def to_dict(self) -> dict[str, Any]:
        return {
            "triggers": list(self.triggers),
            "what_helps": list(self.what_helps),
            "patterns": list(self.patterns),
            "text": self.text,
        }


def summarize_memories(store: MemoryStore) -> MemorySummary:
    """Plain-language digest of the visible memories for the insights browser."""
    triggers = [
        f"{memory.trigger} may trigger {memory.symptom.lower()} ({memory.confidence_level.value} confidence)"
        for memory in store.browse(MemoryKind.TRIGGER)[:SUMMARY_MAX_TRIGGERS]
    ]
    remedies = [
        f"{memory.resolution} for {memory.symptom.lower()} ({memory.effectiveness_percentage}% effective)"
        for memory in store.browse(MemoryKind.WHAT_WORKED)[:SUMMARY_MAX_REMEDIES]
    ]
    patterns = [_observation_text(memory) for memory in store.browse(MemoryKind.PATTERN)[:SUMMARY_MAX_PATTERNS]]
    return MemorySummary(triggers=tuple(triggers), what_helps=tuple(remedies), patterns=tuple(patterns))
