from __future__ import annotations

import json
import logging
from typing import Any, Iterable

from api.db import get_connection
from api.repositories.logs import ensure_user
from learning.builder import default_detail_level, resolve_detail_level
from learning.models import AllergyRecord, MemoryDetailLevel, TrackedItem, clean_display_name, normalize_key

logger = logging.getLogger(__name__)

ITEM_TYPES = {"supplement", "medication", "food"}
ALLERGY_SEVERITIES = {"mild", "moderate", "severe"}


def _json_list(raw: str | None) -> tuple[str, ...]:
    if not raw:
        return ()
    try:
        values = json.loads(raw)
    except ValueError:
        return ()
    return tuple(str(value) for value in values if isinstance(value, str) and value.strip())


def _clean_list(values: Iterable[str] | None) -> list[str]:
    return [name for name in (clean_display_name(value) for value in values or []) if name]


def upsert_tracked_item(*, user_id: int, name: str, item_type: str = "supplement", is_active: bool = True) -> dict[str, Any]:
    display = clean_display_name(name)
    if display is None:
        raise ValueError("tracked item name is required")
    normalized_type = (item_type or "").strip().lower()
    if normalized_type not in ITEM_TYPES:
        raise ValueError(f"unsupported item_type: {item_type}")
    conn = get_connection()
    try:
        ensure_user(conn, user_id)
        row = conn.execute(
            """
            INSERT INTO tracked_items (user_id, name, name_key, item_type, is_active, created_at)
            VALUES (%s, %s, %s, %s, %s, NOW()::text)
            ON CONFLICT (user_id, name_key)
            DO UPDATE SET
                name = excluded.name,
                item_type = excluded.item_type,
                is_active = excluded.is_active
            RETURNING id, user_id, name, item_type, is_active
            """,
            (user_id, display, normalize_key(display), normalized_type, 1 if is_active else 0),
        ).fetchone()
        conn.commit()
        out = dict(row)
        out["is_active"] = bool(out["is_active"])
        return out
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def list_tracked_items(user_id: int, *, active_only: bool = True) -> list[TrackedItem]:
    conn = get_connection()
    try:
        rows = conn.execute(
            """
            SELECT name, item_type, is_active
            FROM tracked_items
            WHERE user_id = %s
              AND (%s = 0 OR is_active = 1)
            ORDER BY id ASC
            """,
            (user_id, 1 if active_only else 0),
        ).fetchall()
    finally:
        conn.close()
    return [TrackedItem(name=row["name"], item_type=row["item_type"], is_active=bool(row["is_active"])) for row in rows]


def upsert_allergy(
    *,
    user_id: int,
    name: str,
    severity: str = "moderate",
    cross_reactive_items: Iterable[str] | None = None,
    known_reactions: Iterable[str] | None = None,
    helpful_medications: Iterable[str] | None = None,
) -> dict[str, Any]:
    display = clean_display_name(name)
    if display is None:
        raise ValueError("allergy name is required")
    normalized_severity = (severity or "").strip().lower()
    if normalized_severity not in ALLERGY_SEVERITIES:
        raise ValueError(f"unsupported allergy severity: {severity}")
    conn = get_connection()
    try:
        ensure_user(conn, user_id)
        row = conn.execute(
            """
            INSERT INTO allergies (
                user_id, name, name_key, severity, cross_reactive_json,
                known_reactions_json, helpful_medications_json, created_at
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, NOW()::text)
            ON CONFLICT (user_id, name_key)
            DO UPDATE SET
                name = excluded.name,
                severity = excluded.severity,
                cross_reactive_json = excluded.cross_reactive_json,
                known_reactions_json = excluded.known_reactions_json,
                helpful_medications_json = excluded.helpful_medications_json
            RETURNING id
            """,
            (
                user_id,
                display,
                normalize_key(display),
                normalized_severity,
                json.dumps(_clean_list(cross_reactive_items)),
                json.dumps(_clean_list(known_reactions)),
                json.dumps(_clean_list(helpful_medications)),
            ),
        ).fetchone()
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()
    return {
        "id": int(row["id"]),
        "user_id": user_id,
        "name": display,
        "severity": normalized_severity,
        "cross_reactive_items": _clean_list(cross_reactive_items),
        "known_reactions": _clean_list(known_reactions),
        "helpful_medications": _clean_list(helpful_medications),
    }


def list_allergies(user_id: int) -> list[AllergyRecord]:
    conn = get_connection()
    try:
        rows = conn.execute(
            """
            SELECT name, severity, cross_reactive_json, known_reactions_json, helpful_medications_json
            FROM allergies
            WHERE user_id = %s
            ORDER BY id ASC
            """,
            (user_id,),
        ).fetchall()
    finally:
        conn.close()
    return [
        AllergyRecord(
            name=row["name"],
            severity=row["severity"],
            cross_reactive_items=_json_list(row["cross_reactive_json"]),
            known_reactions=_json_list(row["known_reactions_json"]),
            helpful_medications=_json_list(row["helpful_medications_json"]),
        )
        for row in rows
    ]


def get_memory_detail_level(user_id: int) -> MemoryDetailLevel:
    conn = get_connection()
    try:
        row = conn.execute(
            "SELECT memory_detail_level FROM users WHERE id = %s",
            (user_id,),
        ).fetchone()
    finally:
        conn.close()
    if row is None or not row["memory_detail_level"]:
        return default_detail_level()
    return resolve_detail_level(row["memory_detail_level"])


def set_memory_detail_level(user_id: int, level: Any) -> MemoryDetailLevel:
    resolved = resolve_detail_level(level)
    conn = get_connection()
    try:
        ensure_user(conn, user_id)
        conn.execute(
            "UPDATE users SET memory_detail_level = %s WHERE id = %s",
            (resolved.value, user_id),
        )
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()
    logger.info("Set memory detail level for user %s to %s", user_id, resolved.value)
    return resolved
