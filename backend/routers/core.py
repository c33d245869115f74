from fastapi import APIRouter, HTTPException

from backend.config import (
    DB_PATH,
    DESCRIPTOR_LENGTH,
    ENABLE_DEBUG_ENDPOINTS,
    HISTORY_LIMIT,
    LATE_CUTOFF,
    MATCH_THRESHOLD,
)

router = APIRouter()


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/debug/dbpath")
def dbpath():
    if not ENABLE_DEBUG_ENDPOINTS:
        raise HTTPException(status_code=404, detail="Not found.")
    return {"db_path": str(DB_PATH)}


@router.get("/config/recognition")
def recognition_config():
    return {
        "match_threshold": MATCH_THRESHOLD,
        "descriptor_length": DESCRIPTOR_LENGTH,
        "late_cutoff": LATE_CUTOFF.strftime("%H:%M:%S"),
        "history_limit": HISTORY_LIMIT,
    }
