# validate and normalize the payload sent to /logs
# transform into structured dict before attempt to insert into DB
# missing/invalid required fields raise NormalizationError

from __future__ import annotations

from typing import Any, Iterable, Mapping, Protocol, TypedDict

from ingestion.time_utils import parse_datetime, to_utc_iso, utc_now_iso, utc_offset_minutes, with_utc_offset
from learning.models import LogEntry, clean_display_name

MIN_SEVERITY = 1
MAX_SEVERITY = 5
MIN_RATING = 1
MAX_RATING = 10
MAX_NAME_LENGTH = 120

# lets main catch specific validation failures and separates from DB/runtime errors
class NormalizationError(ValueError):
    pass

# expected input shape from LogIn
class LogPayload(Protocol):
    user_id: int
    logged_at: str | None
    symptoms: list[str]
    causes: list[str]
    severity: int | None
    resolution: str | None
    resolution_effectiveness: int | None
    notes: str | None
    atmospheric_pressure: str | None
    moon_phase: str | None
    season: str | None

# output contract for the log_entries insert
class NormalizedLog(TypedDict):
    user_id: int
    logged_at: str
    utc_offset_minutes: int
    symptoms: list[str]
    causes: list[str]
    severity: int
    resolution: str | None
    resolution_effectiveness: int | None
    notes: str | None
    atmospheric_pressure: str | None
    moon_phase: str | None
    season: str | None
    ingested_at: str


def _to_utc_iso(value: str | None) -> str | None:
    try:
        return to_utc_iso(value, strict=True)
    except ValueError as exc:
        raise NormalizationError(f"invalid datetime format: {value}") from exc


def normalize_names(values: Iterable[str] | None, *, field_name: str) -> list[str]:
    # keep first-seen casing, drop blanks and case-insensitive duplicates
    names: list[str] = []
    seen: set[str] = set()
    for value in values or []:
        if not isinstance(value, str):
            raise NormalizationError(f"{field_name} entries must be strings")
        display = clean_display_name(value)
        if display is None:
            continue
        if len(display) > MAX_NAME_LENGTH:
            raise NormalizationError(f"{field_name} entry too long: {display[:20]}...")
        if display.lower() in seen:
            continue
        seen.add(display.lower())
        names.append(display)
    return names


def _bounded_int(value: Any, *, field_name: str, low: int, high: int) -> int | None:
    if value is None:
        return None
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise NormalizationError(f"{field_name} must be an integer") from exc
    if number < low or number > high:
        raise NormalizationError(f"{field_name} must be between {low} and {high}")
    return number


def normalize_log(payload: LogPayload) -> NormalizedLog:
    if not payload.logged_at or not payload.logged_at.strip():
        raise NormalizationError("logged_at is required")
    logged_at = _to_utc_iso(payload.logged_at)
    offset_minutes = utc_offset_minutes(payload.logged_at) or 0

    symptoms = normalize_names(payload.symptoms, field_name="symptoms")
    causes = normalize_names(payload.causes, field_name="causes")
    if not symptoms and not causes:
        raise NormalizationError("log entry requires at least one symptom or cause")

    severity = _bounded_int(payload.severity, field_name="severity", low=MIN_SEVERITY, high=MAX_SEVERITY)
    resolution = clean_display_name(payload.resolution)
    rating = _bounded_int(
        payload.resolution_effectiveness,
        field_name="resolution_effectiveness",
        low=MIN_RATING,
        high=MAX_RATING,
    )
    if rating is not None and resolution is None:
        raise NormalizationError("resolution_effectiveness requires a resolution")

    return {
        "user_id": payload.user_id,
        "logged_at": logged_at,
        "utc_offset_minutes": offset_minutes,
        "symptoms": symptoms,
        "causes": causes,
        "severity": severity if severity is not None else MIN_SEVERITY,
        "resolution": resolution,
        "resolution_effectiveness": rating,
        "notes": payload.notes.strip() if payload.notes and payload.notes.strip() else None,
        "atmospheric_pressure": clean_display_name(payload.atmospheric_pressure),
        "moon_phase": clean_display_name(payload.moon_phase),
        "season": clean_display_name(payload.season),
        "ingested_at": utc_now_iso(),
    }


def log_entry_from_row(row: Mapping[str, Any]) -> LogEntry:
    """Build an engine LogEntry from a stored row or normalized payload.

    An unparseable date becomes ``None`` so the rebuild skips the entry
    instead of failing the batch. A stored ``utc_offset_minutes`` puts the
    timestamp back on the clock the user logged it in.
    """
    severity = row.get("severity")
    try:
        severity_value = int(severity) if severity is not None else MIN_SEVERITY
    except (TypeError, ValueError):
        severity_value = MIN_SEVERITY
    rating = row.get("resolution_effectiveness")
    return LogEntry(
        logged_at=with_utc_offset(parse_datetime(row.get("logged_at")), row.get("utc_offset_minutes")),
        symptoms=tuple(row.get("symptoms") or ()),
        causes=tuple(row.get("causes") or ()),
        severity=severity_value,
        resolution=row.get("resolution"),
        resolution_effectiveness=int(rating) if rating is not None else None,
        notes=row.get("notes"),
        atmospheric_pressure=row.get("atmospheric_pressure"),
        moon_phase=row.get("moon_phase"),
        season=row.get("season"),
        entry_id=row.get("id"),
    )
