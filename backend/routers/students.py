import logging
import shutil
import sqlite3

from fastapi import APIRouter, File, HTTPException, UploadFile
from pydantic import BaseModel

from backend.config import PHOTOS_DIR
from backend.errors import MalformedInput
from backend.services.attendance import validate_descriptor
from database.db import (
    add_student,
    get_all_students,
    get_student_by_id,
    set_face_descriptor,
    set_nfc_card,
    set_student_photo,
)

logger = logging.getLogger(__name__)

router = APIRouter()


class StudentCreate(BaseModel):
    nim: str
    name: str
    program: str = ""
    semester: int | None = None
    nfc_card_id: str | None = None


class FaceRegistration(BaseModel):
    descriptor: list[float] | None = None


class FaceRegistrationById(FaceRegistration):
    student_id: int


class CardAssignment(BaseModel):
    nfc_card_id: str | None = None


@router.get("/students")
def students():
    return get_all_students()


@router.get("/students/{student_id}")
def student_detail(student_id: int):
    student = get_student_by_id(student_id)
    if not student:
        return {"found": False}
    return {"found": True, **student}


@router.post("/students")
def create_student(payload: StudentCreate):
    nim = payload.nim.strip()
    name = payload.name.strip()
    program = payload.program.strip()
    card_id = (payload.nfc_card_id or "").strip() or None

    if not nim or not name:
        raise HTTPException(status_code=400, detail="NIM and name are required.")
    if payload.semester is not None and payload.semester < 1:
        raise HTTPException(status_code=400, detail="Semester must be a positive number.")

    try:
        new_id = add_student(nim, name, program or None, payload.semester, card_id)
    except sqlite3.IntegrityError:
        raise HTTPException(status_code=409, detail="NIM or NFC card already registered.")

    logger.info("Created student %s", new_id)
    return {
        "id": new_id,
        "nim": nim,
        "name": name,
        "program": program or None,
        "semester": payload.semester,
        "nfc_card_id": card_id,
    }


def _register_face(student_id: int, descriptor: list[float] | None) -> dict:
    if not get_student_by_id(student_id):
        raise HTTPException(status_code=404, detail="Student not found.")
    try:
        clean = validate_descriptor(descriptor)
    except MalformedInput as e:
        raise HTTPException(status_code=400, detail=e.message)

    set_face_descriptor(student_id, clean)
    logger.info("Registered face descriptor for student %s", student_id)
    return {"ok": True, "student_id": student_id, "message": "Face descriptor saved."}


@router.post("/students/{student_id}/face")
def register_face(student_id: int, payload: FaceRegistration):
    return _register_face(student_id, payload.descriptor)


@router.post("/students/register-face")
def register_face_alias(payload: FaceRegistrationById):
    # Kept for clients that post the student id in the body.
    return _register_face(payload.student_id, payload.descriptor)


@router.put("/students/{student_id}/card")
def assign_card(student_id: int, payload: CardAssignment):
    if not get_student_by_id(student_id):
        raise HTTPException(status_code=404, detail="Student not found.")

    card_id = (payload.nfc_card_id or "").strip() or None
    try:
        set_nfc_card(student_id, card_id)
    except sqlite3.IntegrityError:
        raise HTTPException(status_code=409, detail="NFC card already registered to another student.")
    return {"ok": True, "student_id": student_id, "nfc_card_id": card_id}


# Save uploaded photo to assets/photos/<student_id>/
@router.post("/students/{student_id}/photo")
async def upload_photo(student_id: int, file: UploadFile = File(...)):
    if not get_student_by_id(student_id):
        raise HTTPException(status_code=404, detail="Student not found.")
    if file.content_type not in ("image/jpeg", "image/png"):
        raise HTTPException(status_code=400, detail="Upload JPG/PNG only.")

    save_dir = PHOTOS_DIR / str(student_id)
    save_dir.mkdir(parents=True, exist_ok=True)
    ext = ".jpg" if file.content_type == "image/jpeg" else ".png"
    out_path = save_dir / f"photo{ext}"

    with open(out_path, "wb") as out_file:
        shutil.copyfileobj(file.file, out_file)

    set_student_photo(student_id, str(out_path))
    return {"ok": True, "student_id": student_id, "photo": str(out_path)}
