from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass
from typing import Any, Protocol

from openai import OpenAI

from learning.insights import Response
from learning.models import LogEntry, MemoryKind, clean_display_name
from learning.store import MemoryStore

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_TIMEOUT_SECONDS = 10.0

INSIGHT_TEXT_SCHEMA = {
    "name": "symptom_insight_text",
    "strict": True,
    "schema": {
        "type": "object",
        "additionalProperties": False,
        "properties": {"text": {"type": "string"}},
        "required": ["text"],
    },
}


class TextGenerationError(RuntimeError):
    pass


@dataclass(frozen=True)
class RedactedSummary:
    """What leaves the device: names and severity only, never notes or ids."""

    symptoms: tuple[str, ...]
    severity: int
    triggers: tuple[str, ...] = ()
    treatments: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        return {key: list(value) if isinstance(value, tuple) else value for key, value in data.items()}


class InsightTextGenerator(Protocol):
    def generate_insight_text(self, summary: RedactedSummary) -> str:
        ...


def _dedupe(names: list[str | None]) -> tuple[str, ...]:
    seen: set[str] = set()
    out = []
    for name in names:
        display = clean_display_name(name)
        if display is None or display.lower() in seen:
            continue
        seen.add(display.lower())
        out.append(display)
    return tuple(out)


def build_redacted_summary(entry: LogEntry, response: Response, store: MemoryStore | None = None) -> RedactedSummary:
    triggers: list[str | None] = list(entry.causes)
    triggers.extend(warning.trigger for warning in response.warnings)
    treatments: list[str | None] = [entry.resolution]
    treatments.extend(suggestion.resolution for suggestion in response.suggestions)
    if store is not None:
        for symptom in entry.symptoms:
            treatments.extend(
                memory.resolution
                for memory in store.visible_for_symptom(symptom)
                if memory.kind == MemoryKind.WHAT_WORKED
            )
    return RedactedSummary(
        symptoms=_dedupe(list(entry.symptoms)),
        severity=int(entry.severity),
        triggers=_dedupe(triggers),
        treatments=_dedupe(treatments),
    )


def cloud_text_enabled() -> bool:
    return os.getenv("CLOUD_TEXT_ENABLED", "0").strip().lower() in {"1", "true", "yes", "on"}


def _timeout_seconds() -> float:
    try:
        return max(1.0, float(os.getenv("CLOUD_TEXT_TIMEOUT_SECONDS", str(DEFAULT_TIMEOUT_SECONDS))))
    except ValueError:
        return DEFAULT_TIMEOUT_SECONDS


class OpenAIInsightTextGenerator:
    def __init__(self, client: Any = None, *, model: str | None = None, timeout_seconds: float | None = None) -> None:
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else _timeout_seconds()
        self.model = model or os.getenv("OPENAI_INSIGHT_MODEL", DEFAULT_MODEL)
        self._client = client

    def _get_client(self) -> Any:
        if self._client is not None:
            return self._client
        api_key = os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise TextGenerationError("OPENAI_API_KEY missing")
        self._client = OpenAI(api_key=api_key, timeout=self.timeout_seconds, max_retries=0)
        return self._client

    def generate_insight_text(self, summary: RedactedSummary) -> str:
        client = self._get_client()
        try:
            response = client.chat.completions.create(
                model=self.model,
                temperature=0.2,
                timeout=self.timeout_seconds,
                messages=[
                    {
                        "role": "system",
                        "content": (
                            "Write two short, supportive sentences for someone who just logged symptoms. "
                            "Use only the provided symptoms, triggers and treatments. "
                            "Do not diagnose and do not recommend new medication. "
                            "Keep under 45 words."
                        ),
                    },
                    {"role": "user", "content": json.dumps(summary.to_dict())},
                ],
                response_format={"type": "json_schema", "json_schema": INSIGHT_TEXT_SCHEMA},
            )
        except Exception as exc:
            raise TextGenerationError(f"text generation request failed: {exc}") from exc

        try:
            content = response.choices[0].message.content or ""
            text = str(json.loads(content).get("text") or "")
        except (AttributeError, IndexError, TypeError, ValueError) as exc:
            raise TextGenerationError("unparseable text generation response") from exc
        text = " ".join(text.split())
        if not text:
            raise TextGenerationError("empty text generation response")
        return text


def default_generator() -> InsightTextGenerator | None:
    if not cloud_text_enabled():
        return None
    return OpenAIInsightTextGenerator()


def enhance_response(
    response: Response,
    entry: LogEntry,
    store: MemoryStore | None,
    generator: InsightTextGenerator | None,
) -> str | None:
    """Ask the optional collaborator for extra prose; template output stands on its own.

    Never raises. A missing generator or any failure yields ``None``.
    """
    if generator is None:
        return None
    summary = build_redacted_summary(entry, response, store)
    try:
        return generator.generate_insight_text(summary)
    except Exception:
        logger.exception("Insight text generation failed; using template output only")
        return None
