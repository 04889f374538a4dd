# shared value types for the association engine
# log entries, tracked items and allergies are read-only inputs; Memory is the only mutable record

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, NamedTuple

from learning.scoring import (
    confidence_level,
    confidence_score,
    effectiveness_percentage,
    effectiveness_ratio,
)

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


class MemoryValidationError(ValueError):
    pass


class MemoryKind(str, Enum):
    TRIGGER = "trigger"
    WHAT_WORKED = "whatWorked"
    WHAT_DIDNT_WORK = "whatDidntWork"
    PATTERN = "pattern"
    CORRELATION = "correlation"
    PREFERENCE = "preference"


EFFECTIVENESS_KINDS = frozenset({MemoryKind.WHAT_WORKED, MemoryKind.WHAT_DIDNT_WORK})


class ConfidenceLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return {"low": 1, "medium": 2, "high": 3}[self.value]


class MemoryDetailLevel(str, Enum):
    MINIMAL = "minimal"
    PATTERNS = "patterns"
    FULL = "full"


class Feedback(str, Enum):
    CONFIRM = "confirm"
    DENY = "deny"
    HELPED = "helped"
    DIDNT_HELP = "didntHelp"
    NOT_SURE_YET = "notSureYet"
    NOT_RELEVANT = "notRelevant"


# standardize names for identity keys; display names keep the user's casing
def normalize_key(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = _NON_ALNUM.sub(" ", value.strip().lower())
    normalized = " ".join(normalized.split())
    return normalized or None


def clean_display_name(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = " ".join(value.strip().split())
    return cleaned or None


class MemoryKey(NamedTuple):
    kind: MemoryKind
    trigger: str | None
    symptom: str | None
    resolution: str | None

    @classmethod
    def build(
        cls,
        kind: MemoryKind,
        *,
        trigger: str | None = None,
        symptom: str | None = None,
        resolution: str | None = None,
    ) -> MemoryKey:
        return cls(kind, normalize_key(trigger), normalize_key(symptom), normalize_key(resolution))

    # whatWorked and whatDidntWork for the same resolution+symptom are one family
    @property
    def family(self) -> tuple[str, str | None, str | None, str | None]:
        family_kind = "effectiveness" if self.kind in EFFECTIVENESS_KINDS else self.kind.value
        return (family_kind, self.trigger, self.symptom, self.resolution)

    def as_string(self) -> str:
        return "|".join([self.kind.value, self.trigger or "", self.symptom or "", self.resolution or ""])

    @classmethod
    def from_string(cls, value: str) -> MemoryKey:
        parts = value.split("|")
        if len(parts) != 4:
            raise ValueError(f"invalid memory key: {value}")
        kind, trigger, symptom, resolution = parts
        return cls(MemoryKind(kind), trigger or None, symptom or None, resolution or None)


# required / forbidden identity slots per kind
_KIND_SLOTS: dict[MemoryKind, tuple[frozenset[str], frozenset[str]]] = {
    MemoryKind.TRIGGER: (frozenset({"trigger", "symptom"}), frozenset({"resolution"})),
    MemoryKind.WHAT_WORKED: (frozenset({"resolution", "symptom"}), frozenset({"trigger"})),
    MemoryKind.WHAT_DIDNT_WORK: (frozenset({"resolution", "symptom"}), frozenset({"trigger"})),
    MemoryKind.PATTERN: (frozenset({"trigger", "symptom"}), frozenset({"resolution"})),
    MemoryKind.CORRELATION: (frozenset({"trigger", "symptom"}), frozenset({"resolution"})),
    MemoryKind.PREFERENCE: (frozenset({"resolution"}), frozenset({"trigger", "symptom"})),
}


def _utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


@dataclass(frozen=True)
class LogEntry:
    logged_at: datetime | None
    symptoms: tuple[str, ...] = ()
    causes: tuple[str, ...] = ()
    severity: int = 1
    resolution: str | None = None
    resolution_effectiveness: int | None = None
    notes: str | None = None
    atmospheric_pressure: str | None = None
    moon_phase: str | None = None
    season: str | None = None
    entry_id: int | None = None

    def has_symptom(self, name: str | None) -> bool:
        key = normalize_key(name)
        return key is not None and any(normalize_key(symptom) == key for symptom in self.symptoms)

    def has_cause(self, name: str | None) -> bool:
        key = normalize_key(name)
        return key is not None and any(normalize_key(cause) == key for cause in self.causes)


@dataclass(frozen=True)
class TrackedItem:
    name: str
    item_type: str = "supplement"
    is_active: bool = True


@dataclass(frozen=True)
class AllergyRecord:
    name: str
    severity: str = "moderate"
    cross_reactive_items: tuple[str, ...] = ()
    known_reactions: tuple[str, ...] = ()
    helpful_medications: tuple[str, ...] = ()


@dataclass
class Memory:
    """A learned association between a trigger, symptom and/or resolution.

    Confidence is never stored: ``confidence_score`` is recomputed from the
    counters and feedback flags on every read, so the exposed score cannot
    drift away from the evidence behind it.
    """

    kind: MemoryKind
    trigger: str | None = None
    symptom: str | None = None
    resolution: str | None = None
    occurrence_count: int = 1
    success_count: int = 0
    failure_count: int = 0
    feedback_success_count: int = 0
    feedback_failure_count: int = 0
    severe_occurrence_count: int = 0
    user_confirmed: bool = False
    user_denied: bool = False
    is_active: bool = True
    notes: str | None = None
    last_observed_at: datetime | None = None
    created_at: datetime = field(default_factory=_utc_now)
    memory_id: int | None = None

    def __post_init__(self) -> None:
        self.kind = MemoryKind(self.kind)
        self.trigger = clean_display_name(self.trigger)
        self.symptom = clean_display_name(self.symptom)
        self.resolution = clean_display_name(self.resolution)
        required, forbidden = _KIND_SLOTS[self.kind]
        for slot in required:
            if getattr(self, slot) is None:
                raise MemoryValidationError(f"{self.kind.value} memory requires {slot}")
        for slot in forbidden:
            if getattr(self, slot) is not None:
                raise MemoryValidationError(f"{self.kind.value} memory cannot set {slot}")
        if self.occurrence_count < 0:
            raise MemoryValidationError("occurrence_count cannot be negative")
        if self.user_confirmed and self.user_denied:
            raise MemoryValidationError("memory cannot be both confirmed and denied")

    @property
    def key(self) -> MemoryKey:
        return MemoryKey.build(
            self.kind,
            trigger=self.trigger,
            symptom=self.symptom,
            resolution=self.resolution,
        )

    @property
    def is_effectiveness(self) -> bool:
        return self.kind in EFFECTIVENESS_KINDS

    @property
    def total_successes(self) -> int:
        return self.success_count + self.feedback_success_count

    @property
    def total_outcomes(self) -> int:
        return self.total_successes + self.failure_count + self.feedback_failure_count

    @property
    def effectiveness_score(self) -> float:
        return effectiveness_ratio(self.total_successes, self.total_outcomes)

    @property
    def effectiveness_percentage(self) -> int:
        return effectiveness_percentage(self.total_successes, self.total_outcomes)

    def settle_effectiveness_kind(self) -> None:
        # kind follows the evidence; the family key keeps identity stable across the flip
        if not self.is_effectiveness:
            return
        failures = self.failure_count + self.feedback_failure_count
        self.kind = MemoryKind.WHAT_WORKED if self.total_successes > failures else MemoryKind.WHAT_DIDNT_WORK

    @property
    def confidence_score(self) -> float:
        return confidence_score(
            self.occurrence_count,
            confirmed=self.user_confirmed,
            denied=self.user_denied,
            effectiveness=self.effectiveness_score if self.is_effectiveness and self.total_outcomes else None,
        )

    @property
    def confidence_level(self) -> ConfidenceLevel:
        return ConfidenceLevel(confidence_level(self.confidence_score))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.memory_id,
            "memory_key": self.key.as_string(),
            "kind": self.kind.value,
            "trigger": self.trigger,
            "symptom": self.symptom,
            "resolution": self.resolution,
            "occurrence_count": self.occurrence_count,
            "confidence_score": self.confidence_score,
            "confidence_level": self.confidence_level.value,
            "effectiveness_score": self.effectiveness_score if self.is_effectiveness else None,
            "effectiveness_percentage": self.effectiveness_percentage if self.is_effectiveness else None,
            "user_confirmed": self.user_confirmed,
            "user_denied": self.user_denied,
            "is_active": self.is_active,
            "notes": self.notes,
            "last_observed_at": self.last_observed_at.isoformat() if self.last_observed_at else None,
            "created_at": self.created_at.isoformat(),
        }
