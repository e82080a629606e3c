"""Errors raised by study room operations."""


class StudyRoomError(RuntimeError):
    """Base class for errors reported to the initiating client."""

    kind = "study_room_error"


class RoomNotFound(StudyRoomError):
    kind = "room_not_found"

    def __init__(self, code: str) -> None:
        super().__init__(f"Room {code} does not exist")
        self.code = code


class PermissionDenied(StudyRoomError):
    kind = "permission_denied"


class NotAParticipant(StudyRoomError):
    kind = "not_a_participant"

    def __init__(self, code: str, participant_id: str) -> None:
        super().__init__(f"{participant_id} is not a participant of room {code}")
        self.code = code
        self.participant_id = participant_id


class InvalidQuizTransition(StudyRoomError):
    kind = "invalid_quiz_transition"


class StoreWriteFailed(StudyRoomError):
    """Transient backend failure; safe to re-issue the operation."""

    kind = "store_write_failed"


class VersionConflict(StudyRoomError):
    """Guarded write lost against a concurrent writer."""

    kind = "version_conflict"

    def __init__(self, code: str, expected: int, actual: int) -> None:
        super().__init__(
            f"Room {code} changed concurrently: expected version {expected}, "
            f"found {actual}"
        )
        self.code = code
        self.expected = expected
        self.actual = actual


class MalformedOracleResponse(StudyRoomError):
    """Generated content did not match the requested shape."""

    kind = "malformed_oracle_response"


class RoomCodeExhausted(StudyRoomError):
    """No free room code was found within the configured attempts."""

    kind = "room_code_exhausted"
