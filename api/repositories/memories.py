from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Iterable

from api.db import get_connection
from api.repositories.logs import ensure_user
from learning.models import Memory, MemoryKind
from learning.store import MemoryStore, memory_from_record, memory_to_record

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


def _row_to_memory(row: dict[str, Any]) -> Memory:
    record = dict(row)
    record["trigger"] = record.pop("trigger_name", None)
    record["symptom"] = record.pop("symptom_name", None)
    record["resolution"] = record.pop("resolution_name", None)
    return memory_from_record(record)


def _memory_params(user_id: int, memory: Memory) -> dict[str, Any]:
    record = memory_to_record(memory)
    return {
        "id": memory.memory_id,
        "user_id": user_id,
        "memory_key": record["memory_key"],
        "kind": record["kind"],
        "trigger_name": record["trigger"],
        "symptom_name": record["symptom"],
        "resolution_name": record["resolution"],
        "occurrence_count": record["occurrence_count"],
        "success_count": record["success_count"],
        "failure_count": record["failure_count"],
        "feedback_success_count": record["feedback_success_count"],
        "feedback_failure_count": record["feedback_failure_count"],
        "severe_occurrence_count": record["severe_occurrence_count"],
        "user_confirmed": 1 if record["user_confirmed"] else 0,
        "user_denied": 1 if record["user_denied"] else 0,
        "is_active": 1 if record["is_active"] else 0,
        "notes": record["notes"],
        "last_observed_at": record["last_observed_at"],
        "created_at": record["created_at"],
        "updated_at": _now_iso(),
    }


def _write_memory(conn, user_id: int, memory: Memory) -> Memory:
    params = _memory_params(user_id, memory)
    if memory.memory_id is not None:
        # update by id so a whatWorked/whatDidntWork flip rewrites the same row
        row = conn.execute(
            """
            UPDATE memories SET
                memory_key = %(memory_key)s,
                kind = %(kind)s,
                trigger_name = %(trigger_name)s,
                symptom_name = %(symptom_name)s,
                resolution_name = %(resolution_name)s,
                occurrence_count = %(occurrence_count)s,
                success_count = %(success_count)s,
                failure_count = %(failure_count)s,
                feedback_success_count = %(feedback_success_count)s,
                feedback_failure_count = %(feedback_failure_count)s,
                severe_occurrence_count = %(severe_occurrence_count)s,
                user_confirmed = %(user_confirmed)s,
                user_denied = %(user_denied)s,
                is_active = %(is_active)s,
                notes = %(notes)s,
                last_observed_at = %(last_observed_at)s,
                updated_at = %(updated_at)s
            WHERE id = %(id)s AND user_id = %(user_id)s
            RETURNING id
            """,
            params,
        ).fetchone()
        if row is not None:
            return memory
    row = conn.execute(
        """
        INSERT INTO memories (
            user_id, memory_key, kind, trigger_name, symptom_name, resolution_name,
            occurrence_count, success_count, failure_count,
            feedback_success_count, feedback_failure_count, severe_occurrence_count,
            user_confirmed, user_denied, is_active, notes,
            last_observed_at, created_at, updated_at
        )
        VALUES (
            %(user_id)s, %(memory_key)s, %(kind)s, %(trigger_name)s, %(symptom_name)s, %(resolution_name)s,
            %(occurrence_count)s, %(success_count)s, %(failure_count)s,
            %(feedback_success_count)s, %(feedback_failure_count)s, %(severe_occurrence_count)s,
            %(user_confirmed)s, %(user_denied)s, %(is_active)s, %(notes)s,
            %(last_observed_at)s, %(created_at)s, %(updated_at)s
        )
        ON CONFLICT (user_id, memory_key)
        DO UPDATE SET
            occurrence_count = excluded.occurrence_count,
            success_count = excluded.success_count,
            failure_count = excluded.failure_count,
            feedback_success_count = excluded.feedback_success_count,
            feedback_failure_count = excluded.feedback_failure_count,
            severe_occurrence_count = excluded.severe_occurrence_count,
            user_confirmed = excluded.user_confirmed,
            user_denied = excluded.user_denied,
            is_active = excluded.is_active,
            notes = excluded.notes,
            last_observed_at = excluded.last_observed_at,
            updated_at = excluded.updated_at
        RETURNING id
        """,
        params,
    ).fetchone()
    memory.memory_id = int(row["id"])
    return memory


def load_memory_store(user_id: int, *, min_occurrences: int | None = None) -> MemoryStore:
    conn = get_connection()
    try:
        rows = conn.execute(
            """
            SELECT *
            FROM memories
            WHERE user_id = %s
            ORDER BY id ASC
            """,
            (user_id,),
        ).fetchall()
    finally:
        conn.close()
    return MemoryStore((_row_to_memory(row) for row in rows), min_occurrences=min_occurrences)


def save_memories(user_id: int, memories: Iterable[Memory]) -> list[Memory]:
    conn = get_connection()
    try:
        ensure_user(conn, user_id)
        saved = [_write_memory(conn, user_id, memory) for memory in memories]
        conn.commit()
        return saved
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def replace_memory_store(user_id: int, store: MemoryStore) -> MemoryStore:
    """Persist a rebuilt store as the user's complete memory set.

    Rows that the rebuild neither re-derived nor retained are removed; the
    in-memory store is unaffected when the write fails.
    """
    conn = get_connection()
    try:
        ensure_user(conn, user_id)
        kept_ids = [memory.memory_id for memory in store if memory.memory_id is not None]
        deleted = conn.execute(
            "DELETE FROM memories WHERE user_id = %s AND NOT (id = ANY(%s))",
            (user_id, kept_ids),
        ).rowcount
        for memory in store:
            _write_memory(conn, user_id, memory)
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()
    logger.debug("Persisted %d memories for user %s, removed %d stale rows", len(store), user_id, deleted)
    return store


def get_memory(user_id: int, memory_id: int) -> Memory:
    conn = get_connection()
    try:
        row = conn.execute(
            "SELECT * FROM memories WHERE id = %s AND user_id = %s",
            (memory_id, user_id),
        ).fetchone()
    finally:
        conn.close()
    if row is None:
        raise ValueError("memory_not_found")
    return _row_to_memory(row)


def list_memories(
    user_id: int,
    *,
    kind: MemoryKind | None = None,
    include_inactive: bool = False,
    min_occurrences: int | None = None,
) -> list[Memory]:
    store = load_memory_store(user_id, min_occurrences=min_occurrences)
    return store.browse(kind, include_inactive=include_inactive)
