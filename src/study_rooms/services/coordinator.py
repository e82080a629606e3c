"""Business logic for group study rooms."""

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from uuid import uuid4

from pydantic import BaseModel

from study_rooms.domain.errors import (
    InvalidQuizTransition,
    NotAParticipant,
    PermissionDenied,
    RoomCodeExhausted,
    RoomNotFound,
    StoreWriteFailed,
    VersionConflict,
)
from study_rooms.domain.sessions import (
    AnswerResult,
    ChatMessage,
    Flashcard,
    Identity,
    NoteBlock,
    Participant,
    Permission,
    QuizPhase,
    QuizState,
    Session,
)
from study_rooms.services.room_codes import RoomCodeGenerator, normalize_room_code
from study_rooms.services.store import (
    AppendItems,
    FieldMutation,
    SessionStore,
    SetField,
    append_if_absent,
    remove_by_key,
    without_key,
)
from study_rooms.services.study_content import StudyContentService
from study_rooms.services.subscriptions import SubscriptionManager

_logger = logging.getLogger(__name__)

Compute = Callable[[Session], list[FieldMutation]]


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


def _new_id() -> str:
    return str(uuid4())


def _participant_key(participant: Participant) -> str:
    return participant.id


def _dump(model: BaseModel) -> dict[str, object]:
    return model.model_dump(mode="json", by_alias=True)


@dataclass
class SessionCoordinator:
    """Creates, joins and mutates shared study sessions.

    Roster, host, permission and quiz changes are read-compute-write cycles
    guarded by the document version and retried on conflict. Chat appends are
    unguarded since appends commute.
    """

    store: SessionStore
    code_generator: RoomCodeGenerator = field(default_factory=RoomCodeGenerator)
    content_service: StudyContentService | None = None
    clock: Callable[[], datetime] = _utcnow
    id_factory: Callable[[], str] = _new_id
    room_code_max_attempts: int = 20
    max_write_retries: int = 5

    def create_room(
        self, identity: Identity, subscriptions: SubscriptionManager | None = None
    ) -> str:
        """Create a room hosted by identity and return its code."""
        for attempt in range(1, self.room_code_max_attempts + 1):
            code = self.code_generator.generate()
            session = Session(
                code=code,
                host_id=identity.id,
                participants=(identity.as_participant(),),
                permissions={identity.id: Permission(can_share=True)},
                created_at=self.clock(),
            )
            if self.store.create_if_absent(code, session):
                _logger.info("Room created: code=%s host=%s", code, identity.id)
                self._attach_or_leave(code, identity, subscriptions)
                return code
            _logger.info("Room code collision: code=%s attempt=%s", code, attempt)
        raise RoomCodeExhausted(
            f"No free room code after {self.room_code_max_attempts} attempts"
        )

    def join_room(
        self,
        code: str,
        identity: Identity,
        subscriptions: SubscriptionManager | None = None,
    ) -> Session:
        """Add identity to the roster; joining twice changes nothing."""
        normalized = self._require_code(code)

        def compute(session: Session) -> list[FieldMutation]:
            mutations: list[FieldMutation] = []
            if not session.has_participant(identity.id):
                participants = append_if_absent(
                    session.participants,
                    identity.as_participant(),
                    key=_participant_key,
                )
                mutations.append(
                    SetField(("participants",), [_dump(p) for p in participants])
                )
            if identity.id not in session.permissions:
                mutations.append(
                    SetField(
                        ("permissions", identity.id), _dump(Permission(can_share=False))
                    )
                )
            return mutations

        session = self._guarded_update(normalized, compute)
        _logger.info("Room joined: code=%s participant=%s", normalized, identity.id)
        self._attach_or_leave(normalized, identity, subscriptions)
        return session

    def leave_room(
        self,
        code: str,
        identity: Identity,
        subscriptions: SubscriptionManager | None = None,
    ) -> None:
        """Remove identity, migrating the host role or deleting the room."""
        if subscriptions is not None:
            subscriptions.detach()
        normalized = normalize_room_code(code)
        if normalized is None:
            return
        for _attempt in range(self.max_write_retries):
            session = self.store.read_once(normalized)
            if session is None or not session.has_participant(identity.id):
                return
            remaining = remove_by_key(
                session.participants, identity.id, key=_participant_key
            )
            try:
                if not remaining:
                    self.store.delete(normalized, expected_version=session.version)
                    _logger.info("Room closed: code=%s", normalized)
                    return
                mutations = _departure_mutations(session, identity.id, remaining)
                updated = self.store.update_fields(
                    normalized, mutations, expected_version=session.version
                )
            except VersionConflict:
                _logger.info("Leave raced another write, retrying: code=%s", normalized)
                continue
            if updated is not None and updated.host_id != session.host_id:
                _logger.info(
                    "Host migrated: code=%s from=%s to=%s",
                    normalized,
                    session.host_id,
                    updated.host_id,
                )
            return
        raise StoreWriteFailed(f"Could not leave room {normalized} under contention")

    def send_chat_message(self, code: str, identity: Identity, text: str) -> ChatMessage:
        """Append a chat message; any participant may chat."""
        if not text.strip():
            raise ValueError("Chat message is empty")
        normalized = self._require_code(code)
        session = self.store.read_once(normalized)
        if session is None:
            raise RoomNotFound(normalized)
        if not session.has_participant(identity.id):
            raise NotAParticipant(normalized, identity.id)
        message = ChatMessage(
            id=self.id_factory(),
            sender_id=identity.id,
            sender_name=identity.display_name or "Anonymous",
            text=text,
            timestamp_ms=int(self.clock().timestamp() * 1000),
        )
        updated = self.store.update_fields(
            normalized, [AppendItems(("chatMessages",), (_dump(message),))]
        )
        if updated is None:
            raise RoomNotFound(normalized)
        return message

    def share_notes(
        self, code: str, identity: Identity, note_lines: Sequence[str]
    ) -> NoteBlock:
        """Append a note block if the author may share."""
        normalized = self._require_code(code)
        block = NoteBlock(
            id=self.id_factory(),
            author_id=identity.id,
            author_name=identity.display_name or "Anonymous",
            lines=tuple(note_lines),
        )

        def compute(session: Session) -> list[FieldMutation]:
            _require_sharer(session, identity)
            return [AppendItems(("sharedNotes",), (_dump(block),))]

        self._guarded_update(normalized, compute)
        _logger.info("Notes shared: code=%s author=%s", normalized, identity.id)
        return block

    def share_flashcards(
        self, code: str, identity: Identity, flashcards: Sequence[Flashcard]
    ) -> list[Flashcard]:
        """Append flashcards if the author may share."""
        normalized = self._require_code(code)
        cards = list(flashcards)
        if not cards:
            raise ValueError("No flashcards to share")

        def compute(session: Session) -> list[FieldMutation]:
            _require_sharer(session, identity)
            return [
                AppendItems(("sharedFlashcards",), tuple(_dump(c) for c in cards))
            ]

        self._guarded_update(normalized, compute)
        return cards

    async def generate_notes(
        self, code: str, identity: Identity, source_text: str
    ) -> NoteBlock:
        """Generate notes from text and share them as one block."""
        self._check_can_share(code, identity)
        lines = await self._content().generate_notes(source_text)
        return self.share_notes(code, identity, lines)

    async def generate_flashcards(
        self, code: str, identity: Identity, source_text: str
    ) -> list[Flashcard]:
        """Generate flashcards from text and share them."""
        self._check_can_share(code, identity)
        cards = await self._content().generate_flashcards(source_text)
        return self.share_flashcards(code, identity, cards)

    def set_permission(
        self, code: str, actor: Identity, participant_id: str, can_share: bool
    ) -> Session:
        """Grant or revoke sharing rights; only the host may do this."""
        normalized = self._require_code(code)

        def compute(session: Session) -> list[FieldMutation]:
            _require_host(session, actor)
            if not session.has_participant(participant_id):
                raise NotAParticipant(session.code, participant_id)
            if participant_id == session.host_id and not can_share:
                raise PermissionDenied("The host always keeps sharing rights")
            if session.can_share(participant_id) == can_share:
                return []
            return [
                SetField(("permissions", participant_id, "canShare"), can_share),
            ]

        return self._guarded_update(normalized, compute)

    def transfer_host(
        self, code: str, actor: Identity, participant_id: str
    ) -> Session:
        """Hand the host role to another participant."""
        normalized = self._require_code(code)

        def compute(session: Session) -> list[FieldMutation]:
            _require_host(session, actor)
            if not session.has_participant(participant_id):
                raise NotAParticipant(session.code, participant_id)
            if participant_id == session.host_id:
                return []
            return [
                SetField(("hostId",), participant_id),
                SetField(("permissions", participant_id, "canShare"), True),
            ]

        return self._guarded_update(normalized, compute)

    def start_quiz(
        self, code: str, identity: Identity, questions: Sequence[Flashcard]
    ) -> Session:
        """Start a quiz with identity as quiz master."""
        normalized = self._require_code(code)
        cards = tuple(questions)
        if not cards:
            raise ValueError("A quiz needs at least one question")

        def compute(session: Session) -> list[FieldMutation]:
            return _start_quiz_mutations(session, identity, cards)

        session = self._guarded_update(normalized, compute)
        _logger.info(
            "Quiz started: code=%s master=%s questions=%s",
            normalized,
            identity.id,
            len(cards),
        )
        return session

    def start_quiz_from_shared_flashcards(
        self, code: str, identity: Identity
    ) -> Session:
        """Start a quiz over every flashcard shared in the room so far."""
        normalized = self._require_code(code)

        def compute(session: Session) -> list[FieldMutation]:
            if not session.shared_flashcards:
                raise InvalidQuizTransition("No shared flashcards to quiz on")
            return _start_quiz_mutations(session, identity, session.shared_flashcards)

        return self._guarded_update(normalized, compute)

    def submit_answer(self, code: str, identity: Identity, answer: str) -> AnswerResult:
        """Score one answer per participant for the open question."""
        normalized = self._require_code(code)
        outcome = AnswerResult.ALREADY_ANSWERED

        def compute(session: Session) -> list[FieldMutation]:
            nonlocal outcome
            if not session.has_participant(identity.id):
                raise NotAParticipant(session.code, identity.id)
            quiz = session.quiz_state
            if quiz is None or quiz.phase is not QuizPhase.QUESTION_OPEN:
                raise InvalidQuizTransition("No question is open for answers")
            if quiz.answered.get(identity.id):
                outcome = AnswerResult.ALREADY_ANSWERED
                return []
            question = quiz.current_question
            correct = question is not None and _answers_match(answer, question.answer)
            outcome = AnswerResult.CORRECT if correct else AnswerResult.INCORRECT
            score = quiz.scores.get(identity.id, 0) + (1 if correct else 0)
            return [
                SetField(("quizState", "answered", identity.id), True),
                SetField(("quizState", "scores", identity.id), score),
            ]

        self._guarded_update(normalized, compute)
        return outcome

    def reveal_answer(self, code: str, identity: Identity) -> Session:
        """Close the current question and show its answer."""
        normalized = self._require_code(code)

        def compute(session: Session) -> list[FieldMutation]:
            quiz = _require_quiz_master(session, identity)
            if quiz.phase is not QuizPhase.QUESTION_OPEN:
                raise InvalidQuizTransition("Only an open question can be revealed")
            return [SetField(("quizState", "isRevealed"), True)]

        return self._guarded_update(normalized, compute)

    def advance_quiz(self, code: str, identity: Identity) -> Session:
        """Open the next question, or complete the quiz after the last one."""
        normalized = self._require_code(code)

        def compute(session: Session) -> list[FieldMutation]:
            quiz = _require_quiz_master(session, identity)
            if quiz.phase is not QuizPhase.QUESTION_REVEALED:
                raise InvalidQuizTransition("Reveal the answer before moving on")
            next_index = quiz.current_index + 1
            if next_index >= len(quiz.questions):
                return [SetField(("quizState", "isComplete"), True)]
            return [
                SetField(("quizState", "currentIndex"), next_index),
                SetField(("quizState", "isRevealed"), False),
                SetField(("quizState", "answered"), {}),
            ]

        session = self._guarded_update(normalized, compute)
        if session.quiz_phase is QuizPhase.COMPLETE:
            _logger.info("Quiz complete: code=%s", normalized)
        return session

    def _require_code(self, code: str) -> str:
        normalized = normalize_room_code(code)
        if normalized is None:
            raise RoomNotFound(code)
        return normalized

    def _check_can_share(self, code: str, identity: Identity) -> None:
        normalized = self._require_code(code)
        session = self.store.read_once(normalized)
        if session is None:
            raise RoomNotFound(normalized)
        _require_sharer(session, identity)

    def _content(self) -> StudyContentService:
        if self.content_service is None:
            raise RuntimeError("Study content generation is not configured")
        return self.content_service

    def _attach_or_leave(
        self,
        code: str,
        identity: Identity,
        subscriptions: SubscriptionManager | None,
    ) -> None:
        """Attach the feed; a member who cannot watch the room is removed."""
        if subscriptions is None:
            return
        try:
            subscriptions.attach(code)
        except Exception:
            _logger.warning(
                "Attach failed, undoing membership: code=%s participant=%s",
                code,
                identity.id,
            )
            self.leave_room(code, identity, subscriptions)
            raise

    def _guarded_update(self, code: str, compute: Compute) -> Session:
        for _attempt in range(self.max_write_retries):
            session = self.store.read_once(code)
            if session is None:
                raise RoomNotFound(code)
            mutations = compute(session)
            if not mutations:
                return session
            try:
                updated = self.store.update_fields(
                    code, mutations, expected_version=session.version
                )
            except VersionConflict:
                _logger.info("Write raced another write, retrying: code=%s", code)
                continue
            if updated is None:
                raise RoomNotFound(code)
            return updated
        raise StoreWriteFailed(f"Could not update room {code} under contention")


def _departure_mutations(
    session: Session, leaver_id: str, remaining: tuple[Participant, ...]
) -> list[FieldMutation]:
    """Build the full roster and permission values after a departure."""
    permissions = without_key(session.permissions, leaver_id)
    mutations: list[FieldMutation] = []
    host_id = session.host_id
    if leaver_id == session.host_id:
        host_id = remaining[0].id
        permissions[host_id] = Permission(can_share=True)
        mutations.append(SetField(("hostId",), host_id))
    mutations.append(SetField(("participants",), [_dump(p) for p in remaining]))
    mutations.append(
        SetField(
            ("permissions",),
            {pid: _dump(permission) for pid, permission in permissions.items()},
        )
    )
    quiz = session.quiz_state
    if (
        quiz is not None
        and quiz.quiz_master_id == leaver_id
        and quiz.phase is not QuizPhase.COMPLETE
    ):
        mutations.append(SetField(("quizState", "quizMasterId"), host_id))
    return mutations


def _start_quiz_mutations(
    session: Session, identity: Identity, questions: Sequence[Flashcard]
) -> list[FieldMutation]:
    _require_sharer(session, identity)
    if session.quiz_phase not in {QuizPhase.NOT_STARTED, QuizPhase.COMPLETE}:
        raise InvalidQuizTransition("A quiz is already running")
    quiz = QuizState(
        quiz_master_id=identity.id,
        questions=tuple(questions),
        scores={pid: 0 for pid in session.participant_ids},
    )
    return [SetField(("quizState",), _dump(quiz))]


def _require_sharer(session: Session, identity: Identity) -> None:
    if not session.has_participant(identity.id):
        raise NotAParticipant(session.code, identity.id)
    if not session.can_share(identity.id):
        _logger.warning(
            "Share rejected: code=%s participant=%s", session.code, identity.id
        )
        raise PermissionDenied("You do not have permission to share in this room")


def _require_host(session: Session, identity: Identity) -> None:
    if identity.id != session.host_id:
        raise PermissionDenied("Only the host can do that")


def _require_quiz_master(session: Session, identity: Identity) -> QuizState:
    quiz = session.quiz_state
    if quiz is None:
        raise InvalidQuizTransition("No quiz is running")
    if identity.id != quiz.quiz_master_id:
        raise PermissionDenied("Only the quiz master can advance the quiz")
    if quiz.phase is QuizPhase.COMPLETE:
        raise InvalidQuizTransition("The quiz is complete")
    return quiz


def _answers_match(given: str, expected: str) -> bool:
    return " ".join(given.split()).casefold() == " ".join(expected.split()).casefold()
