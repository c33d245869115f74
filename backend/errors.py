class AttendanceError(Exception):
    """Base class for expected, user-facing attendance outcomes."""

    code = "ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotRecognized(AttendanceError):
    """No enrolled face within threshold, or an unregistered card."""

    code = "FACE_NO_MATCH"

    def __init__(self, message: str = "Face not recognized.", *, code: str | None = None):
        super().__init__(message)
        if code:
            self.code = code


class DuplicateAttendance(AttendanceError):
    """The student already has an attendance event on that day."""

    code = "DUPLICATE_IGNORED"

    def __init__(self, student_id: int, date: str):
        super().__init__(f"Attendance already recorded for {date}.")
        self.student_id = student_id
        self.date = date


class UnknownIdentity(AttendanceError):
    code = "UNKNOWN_STUDENT"

    def __init__(self, student_id: int | None):
        super().__init__("Student not found.")
        self.student_id = student_id


class MalformedInput(AttendanceError):
    code = "MALFORMED_INPUT"
