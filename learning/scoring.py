# pure confidence / effectiveness math shared by the builder, feedback processor and insight generator
# nothing in here reads or mutates a memory; callers pass counters in

from __future__ import annotations

import math

# n / (n + k): 1 occurrence -> 0.33, 2 -> 0.5, 3 -> 0.6, 6 -> 0.75
OCCURRENCE_SATURATION = 2.0
CONFIRM_BONUS = 0.2
LOW_CONFIDENCE_CEILING = 0.4
MEDIUM_CONFIDENCE_CEILING = 0.75


def _clamp_unit(value: float) -> float:
    if math.isnan(value):
        return 0.0
    return min(1.0, max(0.0, value))


def occurrence_baseline(occurrence_count: int) -> float:
    count = max(0, int(occurrence_count))
    return count / (count + OCCURRENCE_SATURATION)


def _consistency_factor(effectiveness: float) -> float:
    # a remedy that helps half the time says little either way
    consistency = abs(2.0 * _clamp_unit(effectiveness) - 1.0)
    return 0.5 + 0.5 * consistency


def confidence_score(
    occurrence_count: int,
    *,
    confirmed: bool = False,
    denied: bool = False,
    effectiveness: float | None = None,
) -> float:
    if denied:
        return 0.0
    score = occurrence_baseline(occurrence_count)
    if effectiveness is not None:
        score *= _consistency_factor(effectiveness)
    if confirmed:
        score += CONFIRM_BONUS
    return _clamp_unit(score)


# three-tier projection of a score; depends on the score alone
def confidence_level(score: float) -> str:
    value = _clamp_unit(score)
    if value < LOW_CONFIDENCE_CEILING:
        return "low"
    if value < MEDIUM_CONFIDENCE_CEILING:
        return "medium"
    return "high"


def effectiveness_ratio(success_count: int, total_count: int) -> float:
    if total_count <= 0:
        return 0.0
    return _clamp_unit(float(success_count) / float(total_count))


def effectiveness_percentage(success_count: int, total_count: int) -> int:
    if total_count <= 0:
        return 0
    return int(math.floor(100.0 * effectiveness_ratio(success_count, total_count) + 0.5))
