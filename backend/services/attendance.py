import logging
import threading
import weakref
from datetime import datetime
from typing import Any

from backend.config import DESCRIPTOR_LENGTH, LATE_CUTOFF, MATCH_THRESHOLD
from backend.errors import MalformedInput, NotRecognized
from backend.matcher import Match, coerce_descriptor, match
from database.db import (
    AttendanceEvent,
    get_enrolled_descriptors,
    get_student_by_card,
    record_attendance,
)

logger = logging.getLogger(__name__)

# -----------------------------
# Per-student write locks
# -----------------------------
LOCKS_GUARD = threading.Lock()
# Entries drop out once no check-in holds a reference to the lock.
STUDENT_LOCKS: "weakref.WeakValueDictionary[int, threading.Lock]" = weakref.WeakValueDictionary()


def _student_lock(student_id: int) -> threading.Lock:
    with LOCKS_GUARD:
        lock = STUDENT_LOCKS.get(student_id)
        if lock is None:
            lock = threading.Lock()
            STUDENT_LOCKS[student_id] = lock
        return lock


def validate_descriptor(value: Any) -> list[float]:
    arr = coerce_descriptor(value)
    if arr is None:
        raise MalformedInput("Face descriptor is missing or invalid.")
    if DESCRIPTOR_LENGTH and arr.size != DESCRIPTOR_LENGTH:
        raise MalformedInput(
            f"Face descriptor must have {DESCRIPTOR_LENGTH} values (got {arr.size})."
        )
    return [float(v) for v in arr]


def recognize_descriptor(descriptor: Any, *, threshold: float | None = None) -> Match:
    """
    Match a probe descriptor against every enrolled student.

    Raises MalformedInput for a bad probe and NotRecognized when no enrolled
    descriptor is within threshold.
    """
    probe = validate_descriptor(descriptor)
    active_threshold = MATCH_THRESHOLD if threshold is None else threshold
    enrolled = get_enrolled_descriptors()

    result = match(probe, enrolled, active_threshold)
    if result is None:
        logger.info("No face match among %d enrolled students", len(enrolled))
        raise NotRecognized()

    logger.debug(
        "Matched student %s at distance %.4f",
        result.identity["id"],
        result.distance,
    )
    return result


def resolve_card(card_id: str | None) -> dict[str, Any]:
    clean_card = (card_id or "").strip()
    if not clean_card:
        raise MalformedInput("NFC card id is required.")

    student = get_student_by_card(clean_card)
    if student is None:
        logger.info("Unregistered NFC card scanned")
        raise NotRecognized("NFC card is not registered.", code="CARD_NOT_REGISTERED")
    return student


def check_in(
    student_id: int,
    *,
    confidence: float,
    method: str,
    timestamp: datetime | None = None,
) -> AttendanceEvent:
    """
    Record one attendance event, serialised per student.

    The database unique constraint on (student, date) still decides the
    outcome if another process writes concurrently.
    """
    stamp = timestamp or datetime.now()
    with _student_lock(student_id):
        event = record_attendance(
            student_id,
            timestamp=stamp,
            confidence=confidence,
            method=method,
            cutoff=LATE_CUTOFF,
        )
    logger.info(
        "Checked in student %s via %s (%s, confidence %.3f)",
        student_id,
        method,
        event["status"],
        event["confidence"],
    )
    return event
