import logging
from datetime import datetime

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel

from backend.config import HISTORY_LIMIT
from backend.errors import DuplicateAttendance, MalformedInput, NotRecognized, UnknownIdentity
from backend.services.attendance import check_in, recognize_descriptor, resolve_card
from database.db import (
    get_attendance_history,
    get_attendance_records,
    get_daily_summary,
)

logger = logging.getLogger(__name__)

router = APIRouter()


class DescriptorProbe(BaseModel):
    descriptor: list[float] | None = None


class CardProbe(BaseModel):
    nfc_card_id: str | None = None


class AttendanceCreate(BaseModel):
    student_id: int
    confidence: float = 0.0
    method: str = "face"
    timestamp: datetime | None = None


class CheckInRequest(BaseModel):
    descriptor: list[float] | None = None
    nfc_card_id: str | None = None
    timestamp: datetime | None = None


def _parse_date(value: str | None) -> str | None:
    if not value:
        return None
    try:
        return datetime.strptime(value.strip(), "%Y-%m-%d").strftime("%Y-%m-%d")
    except ValueError:
        raise HTTPException(status_code=400, detail="Date must be YYYY-MM-DD.")


def _record(student_id: int, *, confidence: float, method: str, timestamp: datetime | None) -> dict:
    """
    Shared write path. Duplicates come back as an informational payload;
    unknown students and bad input become HTTP errors.
    """
    try:
        event = check_in(student_id, confidence=confidence, method=method, timestamp=timestamp)
    except DuplicateAttendance as e:
        logger.info("Duplicate check-in ignored for student %s on %s", e.student_id, e.date)
        return {
            "logged": False,
            "decision_code": e.code,
            "message": e.message,
            "student_id": student_id,
            "date": e.date,
        }
    except UnknownIdentity as e:
        raise HTTPException(status_code=404, detail=e.message)
    except MalformedInput as e:
        raise HTTPException(status_code=400, detail=e.message)

    return {
        "logged": True,
        "decision_code": "CHECKED_IN",
        "message": "Attendance recorded.",
        "record": event,
    }


@router.get("/attendance")
def attendance(date: str | None = None):
    return get_attendance_records(_parse_date(date))


@router.get("/attendance/history")
def history(limit: int = Query(default=HISTORY_LIMIT, ge=1, le=500)):
    return get_attendance_history(limit)


@router.get("/attendance/summary")
def summary(date: str | None = None):
    return get_daily_summary(_parse_date(date))


@router.get("/attendance/statistics")
def statistics():
    return get_daily_summary()


@router.post("/attendance/recognize-face")
def recognize_face(payload: DescriptorProbe):
    try:
        result = recognize_descriptor(payload.descriptor)
    except MalformedInput as e:
        raise HTTPException(status_code=400, detail=e.message)
    except NotRecognized as e:
        return {"recognized": False, "student": None, "confidence": None, "reason": e.code}

    return {
        "recognized": True,
        "student": result.identity,
        "confidence": result.confidence,
        "distance": result.distance,
    }


@router.post("/attendance/nfc-scan")
def nfc_scan(payload: CardProbe):
    try:
        student = resolve_card(payload.nfc_card_id)
    except MalformedInput as e:
        raise HTTPException(status_code=400, detail=e.message)
    except NotRecognized as e:
        return {"recognized": False, "student": None, "reason": e.code}
    return {"recognized": True, "student": student, "confidence": 1.0}


@router.post("/attendance")
def record(payload: AttendanceCreate):
    return _record(
        payload.student_id,
        confidence=payload.confidence,
        method=payload.method.strip().lower(),
        timestamp=payload.timestamp,
    )


@router.post("/attendance/check-in")
def check_in_attendance(payload: CheckInRequest):
    has_face = payload.descriptor is not None
    has_card = bool((payload.nfc_card_id or "").strip())
    if has_face == has_card:
        raise HTTPException(status_code=400, detail="Provide either a face descriptor or an NFC card id.")

    try:
        if has_face:
            result = recognize_descriptor(payload.descriptor)
            student, confidence, method = result.identity, result.confidence, "face"
        else:
            student, confidence, method = resolve_card(payload.nfc_card_id), 1.0, "card"
    except MalformedInput as e:
        raise HTTPException(status_code=400, detail=e.message)
    except NotRecognized as e:
        return {"logged": False, "decision_code": e.code, "message": e.message, "student": None}

    payload_out = _record(
        student["id"],
        confidence=confidence,
        method=method,
        timestamp=payload.timestamp,
    )
    payload_out["student"] = student
    payload_out["confidence"] = confidence
    return payload_out
