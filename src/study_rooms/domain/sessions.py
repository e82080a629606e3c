"""Domain models for shared study sessions."""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _Document(BaseModel):
    """Base for records stored inside the session document."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


@dataclass(frozen=True)
class Identity:
    """A user as supplied by the identity provider."""

    id: str
    display_name: str
    avatar_ref: str = ""

    def as_participant(self) -> "Participant":
        """Return the roster entry for this identity."""
        return Participant(
            id=self.id,
            display_name=self.display_name or "Anonymous",
            avatar_ref=self.avatar_ref,
        )


class Participant(_Document):
    """Roster entry; roster order is join order."""

    id: str
    display_name: str
    avatar_ref: str = ""


class Permission(_Document):
    """Sharing rights of a single participant."""

    can_share: bool = False


class ChatMessage(_Document):
    """Single chat line."""

    id: str
    sender_id: str
    sender_name: str
    text: str
    timestamp_ms: int


class NoteBlock(_Document):
    """Author-attributed chunk of shared study notes."""

    id: str
    author_id: str
    author_name: str
    lines: tuple[str, ...] = ()


class Flashcard(_Document):
    """Question and answer pair, also used as a quiz question."""

    question: str
    answer: str


class QuizPhase(StrEnum):
    """Derived state of the shared quiz."""

    NOT_STARTED = "NOT_STARTED"
    QUESTION_OPEN = "QUESTION_OPEN"
    QUESTION_REVEALED = "QUESTION_REVEALED"
    COMPLETE = "COMPLETE"


class QuizState(_Document):
    """Turn-based quiz shared by every participant of a session."""

    quiz_master_id: str
    current_index: int = 0
    questions: tuple[Flashcard, ...] = ()
    scores: dict[str, int] = Field(default_factory=dict)
    answered: dict[str, bool] = Field(default_factory=dict)
    is_revealed: bool = False
    is_complete: bool = False

    @property
    def phase(self) -> QuizPhase:
        if self.is_complete:
            return QuizPhase.COMPLETE
        if self.is_revealed:
            return QuizPhase.QUESTION_REVEALED
        return QuizPhase.QUESTION_OPEN

    @property
    def current_question(self) -> Flashcard | None:
        if 0 <= self.current_index < len(self.questions):
            return self.questions[self.current_index]
        return None


class Session(_Document):
    """Root aggregate of a group study room, keyed by room code."""

    code: str
    host_id: str
    participants: tuple[Participant, ...] = ()
    permissions: dict[str, Permission] = Field(default_factory=dict)
    chat_messages: tuple[ChatMessage, ...] = ()
    shared_notes: tuple[NoteBlock, ...] = ()
    shared_flashcards: tuple[Flashcard, ...] = ()
    quiz_state: QuizState | None = None
    created_at: datetime
    version: int = 1

    @property
    def participant_ids(self) -> list[str]:
        return [participant.id for participant in self.participants]

    def has_participant(self, participant_id: str) -> bool:
        """Return whether the id is on the roster."""
        return participant_id in self.participant_ids

    def can_share(self, participant_id: str) -> bool:
        """Return whether the participant may share notes or quiz content."""
        permission = self.permissions.get(participant_id)
        return permission is not None and permission.can_share

    @property
    def quiz_phase(self) -> QuizPhase:
        if self.quiz_state is None:
            return QuizPhase.NOT_STARTED
        return self.quiz_state.phase

    def to_document(self) -> dict[str, object]:
        """Serialize to the camelCase JSON document stored by the backend."""
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_document(cls, document: dict[str, object]) -> "Session":
        """Parse a stored document."""
        return cls.model_validate(document)


class AnswerResult(StrEnum):
    """Outcome of a quiz answer submission."""

    CORRECT = "CORRECT"
    INCORRECT = "INCORRECT"
    ALREADY_ANSWERED = "ALREADY_ANSWERED"
