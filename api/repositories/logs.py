from __future__ import annotations

import json
from typing import Any

from api.db import get_connection
from ingestion.normalize_log import NormalizedLog, log_entry_from_row
from learning.models import LogEntry


def _decode_names(raw: str | None) -> list[str]:
    if not raw:
        return []
    try:
        values = json.loads(raw)
    except ValueError:
        return []
    return [str(value) for value in values if isinstance(value, str)]


def _row_to_dict(row: dict[str, Any]) -> dict[str, Any]:
    out = dict(row)
    out["symptoms"] = _decode_names(out.pop("symptoms_json", None))
    out["causes"] = _decode_names(out.pop("causes_json", None))
    return out

# users rows are created lazily; auth/onboarding own the richer profile
def ensure_user(conn, user_id: int) -> None:
    conn.execute(
        """
        INSERT INTO users (id, created_at)
        VALUES (%s, NOW()::text)
        ON CONFLICT (id) DO NOTHING
        """,
        (user_id,),
    )


def insert_log_entry(log: NormalizedLog) -> dict[str, Any]:
    conn = get_connection()
    try:
        ensure_user(conn, log["user_id"])
        row = conn.execute(
            """
            INSERT INTO log_entries (
                user_id, logged_at, utc_offset_minutes, symptoms_json, causes_json, severity,
                resolution, resolution_effectiveness, notes,
                atmospheric_pressure, moon_phase, season, ingested_at
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING *
            """,
            (
                log["user_id"],
                log["logged_at"],
                log["utc_offset_minutes"],
                json.dumps(log["symptoms"]),
                json.dumps(log["causes"]),
                log["severity"],
                log["resolution"],
                log["resolution_effectiveness"],
                log["notes"],
                log["atmospheric_pressure"],
                log["moon_phase"],
                log["season"],
                log["ingested_at"],
            ),
        ).fetchone()
        conn.commit()
        return _row_to_dict(row)
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def list_log_rows(user_id: int) -> list[dict[str, Any]]:
    conn = get_connection()
    try:
        rows = conn.execute(
            """
            SELECT *
            FROM log_entries
            WHERE user_id = %s
            ORDER BY logged_at ASC, id ASC
            """,
            (user_id,),
        ).fetchall()
        return [_row_to_dict(row) for row in rows]
    finally:
        conn.close()

# LogHistory for the engine, oldest first
def load_log_history(user_id: int) -> list[LogEntry]:
    return [log_entry_from_row(row) for row in list_log_rows(user_id)]
