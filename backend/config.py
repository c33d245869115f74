import os
from datetime import time
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parents[1]

ASSETS_DIR = Path(os.getenv("ROLLCALL_ASSETS_DIR", BASE_DIR / "assets"))
PHOTOS_DIR = Path(os.getenv("ROLLCALL_PHOTOS_DIR", ASSETS_DIR / "photos"))
DB_PATH = Path(os.getenv("ROLLCALL_DB_PATH", BASE_DIR / "database" / "rollcall.db"))
LOG_LEVEL = os.getenv("ROLLCALL_LOG_LEVEL", "INFO").strip().upper() or "INFO"


def _parse_bool(value: str | None, fallback: bool) -> bool:
    if value is None:
        return fallback
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return fallback


def _parse_csv(value: str | None, fallback: list[str]) -> list[str]:
    if not value:
        return fallback
    parsed = [item.strip() for item in value.split(",") if item.strip()]
    return parsed or fallback


def _parse_time(value: str | None, fallback: time) -> time:
    if not value:
        return fallback
    parts = value.split(":")
    try:
        hh = int(parts[0])
        mm = int(parts[1]) if len(parts) > 1 else 0
        ss = int(parts[2]) if len(parts) > 2 else 0
        return time(hh, mm, ss)
    except (ValueError, IndexError):
        return fallback


def _parse_threshold(value: str | None, fallback: float) -> float:
    # Confidence is reported as 1 - distance, so thresholds above 1 would
    # allow negative confidences.
    try:
        parsed = float(value) if value else fallback
    except ValueError:
        return fallback
    if parsed <= 0:
        return fallback
    return min(parsed, 1.0)


CORS_ALLOW_ORIGINS = _parse_csv(
    os.getenv("ROLLCALL_CORS_ALLOW_ORIGINS"),
    ["http://localhost:5173", "http://127.0.0.1:5173"],
)
CORS_ALLOW_METHODS = _parse_csv(
    os.getenv("ROLLCALL_CORS_ALLOW_METHODS"),
    ["GET", "POST", "PUT", "OPTIONS"],
)
CORS_ALLOW_HEADERS = _parse_csv(
    os.getenv("ROLLCALL_CORS_ALLOW_HEADERS"),
    ["Content-Type", "Accept"],
)
CORS_ALLOW_CREDENTIALS = _parse_bool(os.getenv("ROLLCALL_CORS_ALLOW_CREDENTIALS"), True)
ENABLE_DEBUG_ENDPOINTS = _parse_bool(os.getenv("ROLLCALL_ENABLE_DEBUG_ENDPOINTS"), False)

# Face matching (Euclidean distance between descriptors)
MATCH_THRESHOLD = _parse_threshold(os.getenv("ROLLCALL_MATCH_THRESHOLD"), 0.6)
DESCRIPTOR_LENGTH = max(0, int(os.getenv("ROLLCALL_DESCRIPTOR_LENGTH", "128")))

# Check-ins after this time of day are marked late
LATE_CUTOFF = _parse_time(os.getenv("ROLLCALL_LATE_CUTOFF"), time(8, 15, 0))

HISTORY_LIMIT = max(1, int(os.getenv("ROLLCALL_HISTORY_LIMIT", "10")))
