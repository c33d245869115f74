import json
import logging
import sqlite3
from datetime import date as date_cls, datetime, time
from typing import Any, Literal, TypedDict

from backend.config import DB_PATH, HISTORY_LIMIT, LATE_CUTOFF
from backend.errors import DuplicateAttendance, MalformedInput, UnknownIdentity

logger = logging.getLogger(__name__)

AttendanceStatus = Literal["present", "late", "absent"]
AttendanceMethod = Literal["face", "card"]

ATTENDANCE_METHODS: set[str] = {"face", "card"}
DATE_FORMAT = "%Y-%m-%d"
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


class AttendanceEvent(TypedDict):
    id: int
    student_id: int
    timestamp: str
    date: str
    status: AttendanceStatus
    confidence: float
    method: AttendanceMethod


class DailySummary(TypedDict):
    date: str
    total_enrolled: int
    present: int
    late: int
    absent: int
    rate: float
    face: int
    card: int


def connect_db():
    conn = sqlite3.connect(str(DB_PATH), check_same_thread=False)
    # recommended with FK tables
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


def create_tables():
    conn = connect_db()
    cursor = conn.cursor()

    cursor.execute("""
    CREATE TABLE IF NOT EXISTS students (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        nim TEXT NOT NULL UNIQUE,
        name TEXT NOT NULL,
        program TEXT,
        semester INTEGER,
        photo TEXT,
        nfc_card_id TEXT UNIQUE,
        face_descriptor TEXT,            -- JSON list of floats
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """)

    # One event per student per calendar day; the unique constraint is what
    # turns a concurrent double check-in into an IntegrityError.
    cursor.execute("""
    CREATE TABLE IF NOT EXISTS attendances (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        student_id INTEGER NOT NULL,
        attendance_time TEXT NOT NULL,   -- YYYY-MM-DD HH:MM:SS
        attendance_date TEXT NOT NULL,   -- YYYY-MM-DD
        status TEXT NOT NULL CHECK (status IN ('present', 'late', 'absent')),
        confidence REAL NOT NULL DEFAULT 0,
        method TEXT NOT NULL CHECK (method IN ('face', 'card')),
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (student_id) REFERENCES students(id),
        UNIQUE(student_id, attendance_date)
    )
    """)

    cursor.execute(
        "CREATE INDEX IF NOT EXISTS idx_attendances_date ON attendances(attendance_date)"
    )

    conn.commit()
    conn.close()


# -----------------------------
# Students
# -----------------------------
_STUDENT_COLUMNS = "id, nim, name, program, semester, photo, nfc_card_id, face_descriptor"


def _student_from_row(row) -> dict[str, Any]:
    sid, nim, name, program, semester, photo, card_id, descriptor = row
    return {
        "id": int(sid),
        "nim": nim,
        "name": name,
        "program": program,
        "semester": semester,
        "photo": photo,
        "nfc_card_id": card_id,
        "has_face": descriptor is not None,
    }


def get_all_students():
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(f"""
        SELECT {_STUDENT_COLUMNS}
        FROM students
        ORDER BY name
    """)
    rows = cur.fetchall()
    conn.close()
    return [_student_from_row(r) for r in rows]


def add_student(
    nim: str,
    name: str,
    program: str | None = None,
    semester: int | None = None,
    nfc_card_id: str | None = None,
) -> int:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute("""
        INSERT INTO students (nim, name, program, semester, nfc_card_id)
        VALUES (?, ?, ?, ?, ?)
    """, (nim, name, program, semester, nfc_card_id))
    student_id = cur.lastrowid
    conn.commit()
    conn.close()
    return student_id


def get_student_by_id(student_id: int, *, conn: sqlite3.Connection | None = None) -> dict[str, Any] | None:
    owns_conn = conn is None
    active_conn = conn or connect_db()
    try:
        cur = active_conn.cursor()
        cur.execute(f"""
            SELECT {_STUDENT_COLUMNS}
            FROM students
            WHERE id = ?
        """, (student_id,))
        row = cur.fetchone()
    finally:
        if owns_conn:
            active_conn.close()
    return _student_from_row(row) if row else None


def get_student_by_card(card_id: str) -> dict[str, Any] | None:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(f"""
        SELECT {_STUDENT_COLUMNS}
        FROM students
        WHERE nfc_card_id = ?
    """, (card_id,))
    row = cur.fetchone()
    conn.close()
    return _student_from_row(row) if row else None


def _update_student_column(student_id: int, column: str, value: Any) -> bool:
    conn = connect_db()
    cur = conn.cursor()
    try:
        cur.execute(
            f"""
            UPDATE students
            SET {column} = ?, updated_at = CURRENT_TIMESTAMP
            WHERE id = ?
            """,
            (value, student_id),
        )
        updated = cur.rowcount > 0
        conn.commit()
    finally:
        conn.close()
    return updated


def set_face_descriptor(student_id: int, descriptor: list[float]) -> bool:
    """Stores (or overwrites on re-enrollment) the student's face descriptor."""
    return _update_student_column(student_id, "face_descriptor", json.dumps(descriptor))


def set_nfc_card(student_id: int, card_id: str | None) -> bool:
    return _update_student_column(student_id, "nfc_card_id", card_id)


def set_student_photo(student_id: int, photo: str) -> bool:
    return _update_student_column(student_id, "photo", photo)


def get_enrolled_descriptors(*, conn: sqlite3.Connection | None = None) -> list[tuple[dict[str, Any], list[float]]]:
    """
    Returns (student, descriptor) pairs for every student with a stored
    descriptor. Rows whose JSON cannot be decoded are skipped.
    """
    owns_conn = conn is None
    active_conn = conn or connect_db()
    try:
        cur = active_conn.cursor()
        cur.execute(f"""
            SELECT {_STUDENT_COLUMNS}
            FROM students
            WHERE face_descriptor IS NOT NULL
        """)
        rows = cur.fetchall()
    finally:
        if owns_conn:
            active_conn.close()

    out: list[tuple[dict[str, Any], list[float]]] = []
    for row in rows:
        try:
            descriptor = json.loads(row[7])
        except (TypeError, ValueError):
            logger.warning("Skipping unreadable face descriptor for student %s", row[0])
            continue
        if not isinstance(descriptor, list) or not descriptor:
            logger.warning("Skipping empty face descriptor for student %s", row[0])
            continue
        out.append((_student_from_row(row), descriptor))
    return out


def count_students(*, conn: sqlite3.Connection | None = None) -> int:
    owns_conn = conn is None
    active_conn = conn or connect_db()
    try:
        cur = active_conn.cursor()
        cur.execute("SELECT COUNT(1) FROM students")
        row = cur.fetchone()
    finally:
        if owns_conn:
            active_conn.close()
    return int(row[0] or 0) if row else 0


# -----------------------------
# Status classification
# -----------------------------
def classify_status(now: datetime, cutoff: time = LATE_CUTOFF) -> AttendanceStatus:
    """`late` when the time of day is strictly after the cutoff."""
    scan_time = now.time()
    if scan_time > cutoff:
        return "late"
    return "present"


# -----------------------------
# Attendance ledger
# -----------------------------
def _normalize_timestamp(timestamp: datetime) -> datetime:
    if not isinstance(timestamp, datetime):
        raise MalformedInput("Timestamp is required.")
    if timestamp.tzinfo is not None:
        # stored times are naive local wall-clock times
        timestamp = timestamp.astimezone().replace(tzinfo=None)
    return timestamp


def _event_from_row(row) -> AttendanceEvent:
    event_id, student_id, stamp, event_date, status, confidence, method = row
    return {
        "id": int(event_id),
        "student_id": int(student_id),
        "timestamp": str(stamp),
        "date": str(event_date),
        "status": status,
        "confidence": float(confidence),
        "method": method,
    }


def get_attendance_on(
    student_id: int,
    date: str,
    *,
    conn: sqlite3.Connection | None = None,
) -> AttendanceEvent | None:
    owns_conn = conn is None
    active_conn = conn or connect_db()
    try:
        cur = active_conn.cursor()
        cur.execute(
            """
            SELECT id, student_id, attendance_time, attendance_date, status, confidence, method
            FROM attendances
            WHERE student_id = ? AND attendance_date = ?
            """,
            (student_id, date),
        )
        row = cur.fetchone()
    finally:
        if owns_conn:
            active_conn.close()
    return _event_from_row(row) if row else None


def record_attendance(
    student_id: int,
    *,
    timestamp: datetime,
    confidence: float,
    method: str,
    cutoff: time | None = None,
    conn: sqlite3.Connection | None = None,
) -> AttendanceEvent:
    """
    Append one attendance event for (student_id, date(timestamp)).

    Raises:
      MalformedInput: bad timestamp, confidence outside [0, 1] or unknown method.
      UnknownIdentity: the student does not exist.
      DuplicateAttendance: the student already has an event that day.
    """
    captured = _normalize_timestamp(timestamp)
    stamp = captured.replace(microsecond=0)
    if method not in ATTENDANCE_METHODS:
        raise MalformedInput(f"Unsupported method: {method!r}.")
    try:
        confidence_value = float(confidence)
    except (TypeError, ValueError):
        raise MalformedInput("Confidence must be a number.")
    if not 0.0 <= confidence_value <= 1.0:
        raise MalformedInput("Confidence must be between 0 and 1.")

    event_date = stamp.strftime(DATE_FORMAT)
    event_time = stamp.strftime(TIMESTAMP_FORMAT)
    status = classify_status(captured, LATE_CUTOFF if cutoff is None else cutoff)

    owns_conn = conn is None
    active_conn = conn or connect_db()
    cur = active_conn.cursor()
    try:
        if get_student_by_id(student_id, conn=active_conn) is None:
            raise UnknownIdentity(student_id)

        if get_attendance_on(student_id, event_date, conn=active_conn) is not None:
            raise DuplicateAttendance(student_id, event_date)

        try:
            cur.execute(
                """
                INSERT INTO attendances (
                    student_id,
                    attendance_time,
                    attendance_date,
                    status,
                    confidence,
                    method
                )
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (student_id, event_time, event_date, status, confidence_value, method),
            )
        except sqlite3.IntegrityError:
            # Lost the race against a concurrent insert for the same day.
            if get_attendance_on(student_id, event_date, conn=active_conn) is not None:
                raise DuplicateAttendance(student_id, event_date)
            raise
        event_id = int(cur.lastrowid)
        if owns_conn:
            active_conn.commit()
    except Exception:
        if owns_conn:
            active_conn.rollback()
        raise
    finally:
        if owns_conn:
            active_conn.close()

    return {
        "id": event_id,
        "student_id": student_id,
        "timestamp": event_time,
        "date": event_date,
        "status": status,
        "confidence": confidence_value,
        "method": method,
    }


# -----------------------------
# Attendance list + history
# -----------------------------
def _record_from_joined_row(row) -> dict[str, Any]:
    event_id, student_id, name, nim, stamp, event_date, status, confidence, method = row
    return {
        "id": int(event_id),
        "student_id": int(student_id),
        "student_name": name,
        "nim": nim,
        "timestamp": stamp,
        "date": event_date,
        "status": status,
        "confidence": float(confidence),
        "method": method,
    }


_JOINED_SELECT = """
    SELECT
        a.id,
        a.student_id,
        s.name,
        s.nim,
        a.attendance_time,
        a.attendance_date,
        a.status,
        a.confidence,
        a.method
    FROM attendances a
    JOIN students s ON s.id = a.student_id
"""


def get_attendance_records(date=None):
    conn = connect_db()
    cur = conn.cursor()

    where = []
    params: list[Any] = []
    if date:
        where.append("a.attendance_date = ?")
        params.append(date)

    query = _JOINED_SELECT
    if where:
        query += f" WHERE {' AND '.join(where)}"
    query += " ORDER BY a.attendance_date DESC, a.attendance_time ASC"

    cur.execute(query, params)
    rows = cur.fetchall()
    conn.close()
    return [_record_from_joined_row(r) for r in rows]


def get_attendance_history(limit: int = HISTORY_LIMIT):
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(
        _JOINED_SELECT + " ORDER BY a.attendance_time DESC, a.id DESC LIMIT ?",
        (max(1, int(limit)),),
    )
    rows = cur.fetchall()
    conn.close()
    return [_record_from_joined_row(r) for r in rows]


# -----------------------------
# Daily summary
# -----------------------------
def build_summary(day: str, *, total_enrolled: int, present: int, late: int, face: int = 0, card: int = 0) -> DailySummary:
    absent = max(0, total_enrolled - present)
    rate = (present / total_enrolled) * 100 if total_enrolled > 0 else 0.0
    return {
        "date": day,
        "total_enrolled": total_enrolled,
        "present": present,
        "late": late,
        "absent": absent,
        "rate": rate,
        "face": face,
        "card": card,
    }


def get_daily_summary(date=None, *, conn: sqlite3.Connection | None = None) -> DailySummary:
    day = date or date_cls.today().strftime(DATE_FORMAT)
    owns_conn = conn is None
    active_conn = conn or connect_db()
    try:
        total_enrolled = count_students(conn=active_conn)
        cur = active_conn.cursor()
        cur.execute(
            """
            SELECT
                SUM(CASE WHEN status IN ('present', 'late') THEN 1 ELSE 0 END) AS present,
                SUM(CASE WHEN status = 'late' THEN 1 ELSE 0 END) AS late,
                SUM(CASE WHEN method = 'face' THEN 1 ELSE 0 END) AS face,
                SUM(CASE WHEN method = 'card' THEN 1 ELSE 0 END) AS card
            FROM attendances
            WHERE attendance_date = ?
            """,
            (day,),
        )
        row = cur.fetchone()
    finally:
        if owns_conn:
            active_conn.close()

    present = int(row[0] or 0) if row else 0
    late = int(row[1] or 0) if row else 0
    face = int(row[2] or 0) if row else 0
    card = int(row[3] or 0) if row else 0
    return build_summary(
        day,
        total_enrolled=total_enrolled,
        present=present,
        late=late,
        face=face,
        card=card,
    )
