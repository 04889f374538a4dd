from __future__ import annotations

import logging
from typing import Any

from learning.models import Feedback, Memory
from learning.store import MemoryStore

logger = logging.getLogger(__name__)


class FeedbackNotApplicable(ValueError):
    pass


def parse_feedback(value: Any) -> Feedback:
    if isinstance(value, Feedback):
        return value
    raw = str(value or "").strip()
    for option in Feedback:
        if option.value.lower() == raw.lower():
            return option
    raise ValueError(f"unknown feedback: {value}")


def apply_feedback(memory: Memory, feedback: Any, store: MemoryStore | None = None) -> Memory:
    """Apply one user feedback event to exactly one memory and return it.

    confirm re-activates a dismissed memory; deny deactivates it without
    deleting it. helped/didntHelp only apply to effectiveness memories and
    move the feedback counters, never the log-derived ones, so a later
    rebuild recomputes counts without losing these outcomes.
    When the memory lives in ``store``, a whatWorked/whatDidntWork flip
    re-files it under its new key.
    """
    signal = parse_feedback(feedback)

    if signal == Feedback.CONFIRM:
        memory.user_confirmed = True
        memory.user_denied = False
        memory.is_active = True
    elif signal == Feedback.DENY:
        memory.user_denied = True
        memory.user_confirmed = False
        memory.is_active = False
    elif signal in (Feedback.HELPED, Feedback.DIDNT_HELP):
        if not memory.is_effectiveness:
            raise FeedbackNotApplicable(f"{signal.value} does not apply to {memory.kind.value} memories")
        previous_key = memory.key
        if signal == Feedback.HELPED:
            memory.feedback_success_count += 1
        else:
            memory.feedback_failure_count += 1
        memory.settle_effectiveness_kind()
        if store is not None and memory.key != previous_key and store.get(previous_key) is memory:
            store.rekey(previous_key, memory)
    elif signal == Feedback.NOT_RELEVANT:
        memory.is_active = False
    # notSureYet leaves the memory untouched

    logger.debug(
        "Applied %s feedback to %s memory id=%s",
        signal.value,
        memory.kind.value,
        memory.memory_id,
    )
    return memory
