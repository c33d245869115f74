import pytest
from fastapi.testclient import TestClient

import backend.main as main
import backend.routers.core as core
import backend.routers.students as students
import database.db as db


@pytest.fixture()
def client(db_path, tmp_path, monkeypatch):
    monkeypatch.setattr(students, "PHOTOS_DIR", tmp_path / "photos")

    with TestClient(main.app) as c:
        yield c


def _descriptor(value: float = 0.0, length: int = 128) -> list[float]:
    return [value] * length


def _create_student(client, nim: str, name: str, **extra) -> int:
    payload = {"nim": nim, "name": name, "program": "Informatics", "semester": 3, **extra}
    res = client.post("/students", json=payload)
    assert res.status_code == 200
    return res.json()["id"]


def _enroll(client, nim: str, name: str, value: float, **extra) -> int:
    student_id = _create_student(client, nim, name, **extra)
    res = client.post(f"/students/{student_id}/face", json={"descriptor": _descriptor(value)})
    assert res.status_code == 200
    return student_id


def test_health(client):
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json() == {"status": "ok"}


def test_debug_dbpath_disabled_by_default(client):
    res = client.get("/debug/dbpath")
    assert res.status_code == 404
    assert res.json()["detail"] == "Not found."


def test_debug_dbpath_when_enabled(client, monkeypatch):
    monkeypatch.setattr(core, "ENABLE_DEBUG_ENDPOINTS", True)

    res = client.get("/debug/dbpath")
    assert res.status_code == 200
    assert "db_path" in res.json()


def test_recognition_config_reports_defaults(client):
    res = client.get("/config/recognition")
    assert res.status_code == 200
    payload = res.json()
    assert payload["match_threshold"] == 0.6
    assert payload["late_cutoff"] == "08:15:00"
    assert payload["descriptor_length"] == 128


def test_create_and_list_students(client):
    student_id = _create_student(client, "2101001", "Ayu Lestari", nfc_card_id="CARD-01")

    res = client.get("/students")
    assert res.status_code == 200
    rows = res.json()
    assert [r["id"] for r in rows] == [student_id]
    assert rows[0]["has_face"] is False
    assert rows[0]["nfc_card_id"] == "CARD-01"

    detail = client.get(f"/students/{student_id}").json()
    assert detail["found"] is True
    assert detail["nim"] == "2101001"


def test_student_detail_missing(client):
    assert client.get("/students/42").json() == {"found": False}


def test_duplicate_nim_is_rejected(client):
    _create_student(client, "2101002", "Budi")

    res = client.post("/students", json={"nim": "2101002", "name": "Other"})
    assert res.status_code == 409


def test_create_student_requires_nim_and_name(client):
    res = client.post("/students", json={"nim": "  ", "name": "Nobody"})
    assert res.status_code == 400
    assert res.json()["detail"] == "NIM and name are required."


def test_register_face_validation(client):
    student_id = _create_student(client, "2101003", "Citra")

    res = client.post(f"/students/{student_id}/face", json={"descriptor": [0.1, 0.2]})
    assert res.status_code == 400
    assert "128" in res.json()["detail"]

    res = client.post(f"/students/{student_id}/face", json={})
    assert res.status_code == 400

    res = client.post("/students/999/face", json={"descriptor": _descriptor()})
    assert res.status_code == 404


def test_register_face_alias_overwrites_descriptor(client):
    student_id = _enroll(client, "2101004", "Dewi", 0.0)

    res = client.post(
        "/students/register-face",
        json={"student_id": student_id, "descriptor": _descriptor(0.5)},
    )
    assert res.status_code == 200

    # Old descriptor no longer matches, the new one does.
    res = client.post("/attendance/recognize-face", json={"descriptor": _descriptor(0.0)})
    assert res.json()["recognized"] is False
    res = client.post("/attendance/recognize-face", json={"descriptor": _descriptor(0.5)})
    assert res.json()["recognized"] is True
    assert res.json()["student"]["id"] == student_id


def test_recognize_face_picks_nearest_student(client):
    near = _enroll(client, "2101005", "Eka", 0.0)
    _enroll(client, "2101006", "Fajar", 1.0)

    probe = _descriptor(0.0)
    probe[0] = 0.3
    res = client.post("/attendance/recognize-face", json={"descriptor": probe})
    assert res.status_code == 200
    body = res.json()
    assert body["recognized"] is True
    assert body["student"]["id"] == near
    assert body["confidence"] == pytest.approx(0.7)


def test_recognize_face_not_recognized(client):
    _enroll(client, "2101007", "Gita", 0.0)

    res = client.post("/attendance/recognize-face", json={"descriptor": _descriptor(0.2)})
    assert res.status_code == 200
    assert res.json() == {"recognized": False, "student": None, "confidence": None, "reason": "FACE_NO_MATCH"}


def test_recognize_face_rejects_missing_descriptor(client):
    res = client.post("/attendance/recognize-face", json={})
    assert res.status_code == 400


def test_nfc_scan(client):
    student_id = _create_student(client, "2101008", "Hana", nfc_card_id="04A1B2C3")

    res = client.post("/attendance/nfc-scan", json={"nfc_card_id": "04A1B2C3"})
    assert res.json()["recognized"] is True
    assert res.json()["student"]["id"] == student_id

    res = client.post("/attendance/nfc-scan", json={"nfc_card_id": "FFFF"})
    assert res.json() == {"recognized": False, "student": None, "reason": "CARD_NOT_REGISTERED"}

    res = client.post("/attendance/nfc-scan", json={"nfc_card_id": ""})
    assert res.status_code == 400


def test_assign_card_conflict(client):
    _create_student(client, "2101009", "Indra", nfc_card_id="CARD-A")
    other = _create_student(client, "2101010", "Joko")

    res = client.put(f"/students/{other}/card", json={"nfc_card_id": "CARD-A"})
    assert res.status_code == 409

    res = client.put(f"/students/{other}/card", json={"nfc_card_id": "CARD-B"})
    assert res.status_code == 200
    assert client.post("/attendance/nfc-scan", json={"nfc_card_id": "CARD-B"}).json()["student"]["id"] == other


def test_face_check_in_then_duplicate(client):
    student_id = _enroll(client, "2101011", "Kirana", 0.0)
    body = {"descriptor": _descriptor(0.0), "timestamp": "2026-02-10T08:10:00"}

    first = client.post("/attendance/check-in", json=body)
    assert first.status_code == 200
    first_body = first.json()
    assert first_body["logged"] is True
    assert first_body["decision_code"] == "CHECKED_IN"
    assert first_body["record"]["status"] == "present"
    assert first_body["record"]["method"] == "face"
    assert first_body["record"]["student_id"] == student_id
    assert first_body["record"]["confidence"] == pytest.approx(1.0)

    second = client.post("/attendance/check-in", json={**body, "timestamp": "2026-02-10T10:00:00"})
    assert second.status_code == 200
    second_body = second.json()
    assert second_body["logged"] is False
    assert second_body["decision_code"] == "DUPLICATE_IGNORED"

    assert len(client.get("/attendance", params={"date": "2026-02-10"}).json()) == 1


def test_card_check_in_is_late_after_cutoff(client):
    _create_student(client, "2101012", "Lina", nfc_card_id="CARD-LATE")

    res = client.post(
        "/attendance/check-in",
        json={"nfc_card_id": "CARD-LATE", "timestamp": "2026-02-10T08:15:01"},
    )
    body = res.json()
    assert body["logged"] is True
    assert body["record"]["status"] == "late"
    assert body["record"]["method"] == "card"
    assert body["record"]["confidence"] == 1.0


def test_check_in_no_match(client):
    _enroll(client, "2101013", "Mira", 0.0)

    res = client.post("/attendance/check-in", json={"descriptor": _descriptor(0.9)})
    assert res.status_code == 200
    assert res.json()["logged"] is False
    assert res.json()["decision_code"] == "FACE_NO_MATCH"
    assert client.get("/attendance").json() == []


def test_check_in_requires_exactly_one_credential(client):
    res = client.post("/attendance/check-in", json={})
    assert res.status_code == 400

    res = client.post(
        "/attendance/check-in",
        json={"descriptor": _descriptor(), "nfc_card_id": "CARD"},
    )
    assert res.status_code == 400


def test_record_attendance_endpoint_errors(client):
    student_id = _create_student(client, "2101014", "Nadia")

    res = client.post("/attendance", json={"student_id": 999, "confidence": 0.9})
    assert res.status_code == 404

    res = client.post("/attendance", json={"student_id": student_id, "confidence": 2.0})
    assert res.status_code == 400

    res = client.post("/attendance", json={"student_id": student_id, "confidence": 0.9, "method": "retina"})
    assert res.status_code == 400

    res = client.post(
        "/attendance",
        json={"student_id": student_id, "confidence": 0.9, "timestamp": "2026-02-10T07:59:00"},
    )
    assert res.status_code == 200
    assert res.json()["record"]["status"] == "present"


def test_summary_and_history(client):
    a = _create_student(client, "2101015", "Oki")
    b = _create_student(client, "2101016", "Putri")
    _create_student(client, "2101017", "Rama")

    client.post("/attendance", json={"student_id": a, "confidence": 0.9, "timestamp": "2026-02-10T08:00:00"})
    client.post(
        "/attendance",
        json={"student_id": b, "confidence": 1.0, "method": "card", "timestamp": "2026-02-10T08:30:00"},
    )

    summary = client.get("/attendance/summary", params={"date": "2026-02-10"}).json()
    assert summary["total_enrolled"] == 3
    assert summary["present"] == 2
    assert summary["late"] == 1
    assert summary["absent"] == 1
    assert summary["rate"] == pytest.approx(200 / 3)
    assert summary["card"] == 1

    history = client.get("/attendance/history").json()
    assert [r["student_id"] for r in history] == [b, a]
    assert history[0]["student_name"] == "Putri"


def test_summary_rejects_bad_date(client):
    res = client.get("/attendance/summary", params={"date": "10/02/2026"})
    assert res.status_code == 400


def test_statistics_for_today_with_no_students(client):
    res = client.get("/attendance/statistics")
    assert res.status_code == 200
    body = res.json()
    assert body["total_enrolled"] == 0
    assert body["rate"] == 0


def test_upload_photo(client):
    student_id = _create_student(client, "2101018", "Sari")

    files = {"file": ("face.jpg", b"\xff\xd8\xff\xe0fake-jpeg", "image/jpeg")}
    res = client.post(f"/students/{student_id}/photo", files=files)
    assert res.status_code == 200
    assert res.json()["photo"].endswith("photo.jpg")
    assert db.get_student_by_id(student_id)["photo"] == res.json()["photo"]

    files = {"file": ("notes.txt", b"hello", "text/plain")}
    res = client.post(f"/students/{student_id}/photo", files=files)
    assert res.status_code == 400
