import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from psycopg import Error as DatabaseError

from api.db import initialize_database
from api.repositories.logs import insert_log_entry, load_log_history
from api.repositories.memories import (
    get_memory,
    list_memories,
    load_memory_store,
    replace_memory_store,
    save_memories,
)
from api.repositories.profile import (
    get_memory_detail_level,
    list_allergies,
    list_tracked_items,
    set_memory_detail_level,
    upsert_allergy,
    upsert_tracked_item,
)
from api.schemas import (
    AllergyIn,
    AllergyOut,
    FoodCheckIn,
    FoodCheckOut,
    LogIn,
    LogOut,
    MemoryFeedbackIn,
    MemoryOut,
    MemorySummaryOut,
    RebuildIn,
    RebuildOut,
    TrackedItemIn,
    TrackedItemOut,
)
from ingestion.normalize_log import NormalizationError, log_entry_from_row, normalize_log
from learning.builder import rebuild_memories, record_observation
from learning.feedback import FeedbackNotApplicable, apply_feedback
from learning.food_safety import check_food
from learning.insights import generate, summarize_memories
from learning.models import MemoryKind
from learning.text_generation import default_generator, enhance_response


@asynccontextmanager
async def _lifespan(app: FastAPI):
    _ = app
    initialize_database()
    yield


app = FastAPI(
    title="Symptom Memory API",
    version="0.1.0",
    lifespan=_lifespan,
)
logger = logging.getLogger(__name__)


def _cors_allow_origins() -> list[str]:
    configured = os.getenv("CORS_ALLOW_ORIGINS", "")
    if configured.strip():
        return [origin.strip().rstrip("/") for origin in configured.split(",") if origin.strip()]
    return [
        "http://localhost:8081",
        "http://127.0.0.1:8081",
        "http://localhost:19006",
        "http://127.0.0.1:19006",
    ]


app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_allow_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _parse_kind(kind: Optional[str]) -> Optional[MemoryKind]:
    if kind is None or not kind.strip():
        return None
    try:
        return MemoryKind(kind.strip())
    except ValueError:
        raise HTTPException(status_code=400, detail=f"unknown memory kind: {kind}")


# user logs an entry; insights come from memories as they were before this entry
@app.post("/logs", response_model=LogOut)
def create_log(payload: LogIn):
    # normalize/validate first so db inserts always receive standardized shape
    try:
        normalized = normalize_log(payload)
    except NormalizationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    try:
        row = insert_log_entry(normalized)
    except DatabaseError:
        logger.exception("Log insert failed", extra={"user_id": payload.user_id})
        raise HTTPException(status_code=503, detail="log storage unavailable, retry later")

    entry = log_entry_from_row(row)
    store = load_memory_store(payload.user_id)
    response = generate(entry, store)
    cloud_text = enhance_response(response, entry, store, default_generator())

    try:
        touched = record_observation(
            entry,
            store,
            list_tracked_items(payload.user_id),
            get_memory_detail_level(payload.user_id),
        )
        save_memories(payload.user_id, touched)
    except DatabaseError:
        # the entry is stored; the next rebuild re-derives these counts
        logger.exception("Incremental memory update failed", extra={"user_id": payload.user_id})

    return {
        "id": int(row["id"]),
        "user_id": int(row["user_id"]),
        "logged_at": str(row["logged_at"]),
        "symptoms": row["symptoms"],
        "causes": row["causes"],
        "severity": int(row["severity"]),
        "resolution": row["resolution"],
        "resolution_effectiveness": row["resolution_effectiveness"],
        "insights": response.trimmed().to_dict(),
        "cloud_text": cloud_text,
    }


# insights browser, highest confidence first
@app.get("/memories", response_model=list[MemoryOut])
def get_memories(user_id: int, kind: Optional[str] = None, include_inactive: bool = False):
    parsed_kind = _parse_kind(kind)
    memories = list_memories(user_id, kind=parsed_kind, include_inactive=include_inactive)
    return [memory.to_dict() for memory in memories]


# plain-language digest shown above the insights browser
@app.get("/memories/summary", response_model=MemorySummaryOut)
def get_memory_summary(user_id: int):
    summary = summarize_memories(load_memory_store(user_id))
    return {"user_id": user_id, **summary.to_dict()}


@app.post("/memories/rebuild", response_model=RebuildOut)
def rebuild_user_memories(payload: RebuildIn):
    if payload.memory_detail_level is not None:
        level = set_memory_detail_level(payload.user_id, payload.memory_detail_level)
    else:
        level = get_memory_detail_level(payload.user_id)
    previous = load_memory_store(payload.user_id)
    store, summary = rebuild_memories(
        load_log_history(payload.user_id),
        list_tracked_items(payload.user_id),
        level,
        previous=previous,
    )
    try:
        replace_memory_store(payload.user_id, store)
    except DatabaseError:
        logger.exception("Memory rebuild persist failed", extra={"user_id": payload.user_id})
        raise HTTPException(status_code=503, detail="memory storage unavailable, retry later")
    return {"user_id": payload.user_id, "memory_detail_level": level.value, **summary.to_dict()}


@app.post("/memories/{memory_id}/feedback", response_model=MemoryOut)
def submit_memory_feedback(memory_id: int, payload: MemoryFeedbackIn):
    try:
        memory = get_memory(payload.user_id, memory_id)
        apply_feedback(memory, payload.feedback)
    except FeedbackNotApplicable as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except ValueError as exc:
        if str(exc) == "memory_not_found":
            raise HTTPException(status_code=404, detail="Memory not found")
        raise
    save_memories(payload.user_id, [memory])
    return memory.to_dict()


@app.post("/food/check", response_model=FoodCheckOut)
def check_food_safety(payload: FoodCheckIn):
    result = check_food(
        payload.food_name,
        list_allergies(payload.user_id),
        load_memory_store(payload.user_id),
    )
    return result.to_dict()


@app.post("/tracked_items", response_model=TrackedItemOut)
def create_tracked_item(payload: TrackedItemIn):
    try:
        return upsert_tracked_item(
            user_id=payload.user_id,
            name=payload.name,
            item_type=payload.item_type,
            is_active=payload.is_active,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@app.post("/allergies", response_model=AllergyOut)
def create_allergy(payload: AllergyIn):
    try:
        return upsert_allergy(
            user_id=payload.user_id,
            name=payload.name,
            severity=payload.severity,
            cross_reactive_items=payload.cross_reactive_items,
            known_reactions=payload.known_reactions,
            helpful_medications=payload.helpful_medications,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
