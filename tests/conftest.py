"""Shared test fixtures."""

import itertools
import random
from dataclasses import dataclass, field
from datetime import UTC, datetime

import pytest

from study_rooms.adapters.memory_session_store import InMemorySessionStore
from study_rooms.config import Settings
from study_rooms.containers import AppContainer
from study_rooms.domain.sessions import Identity, Permission, Session
from study_rooms.services.coordinator import SessionCoordinator
from study_rooms.services.room_codes import RoomCodeGenerator
from study_rooms.services.study_content import StudyContentClient, StudyContentService

FIXED_NOW = datetime(2026, 3, 14, 9, 30, tzinfo=UTC)


@dataclass
class FakeStudyContentClient(StudyContentClient):
    """Fake study content client returning payloads by schema name."""

    payloads: dict[str, object] = field(
        default_factory=lambda: {
            "study_notes": {"notes": ["# Photosynthesis", "- Happens in chloroplasts"]},
            "study_flashcards": {
                "flashcards": [
                    {"question": "Where does photosynthesis happen?", "answer": "Chloroplasts"},
                    {"question": "What gas is released?", "answer": "Oxygen"},
                ]
            },
        }
    )
    prompts: list[str] = field(default_factory=list)

    async def generate(  # noqa: PLR0913
        self,
        *,
        model: str,
        reasoning_effort: str | None,
        store: bool,
        prompt: str,
        schema: dict[str, object],
        schema_name: str,
    ) -> dict[str, object]:
        self.prompts.append(prompt)
        return self.payloads[schema_name]


@dataclass
class SequenceIds:
    """Deterministic id factory."""

    prefix: str = "id"
    counter: itertools.count = field(default_factory=lambda: itertools.count(1))

    def __call__(self) -> str:
        return f"{self.prefix}-{next(self.counter)}"


@pytest.fixture
def settings() -> Settings:
    return Settings(
        session_store="memory",
        openai_api_key="openai-key",
    )


@pytest.fixture
def host() -> Identity:
    return Identity(id="host-1", display_name="Hana", avatar_ref="avatars/hana.png")


@pytest.fixture
def bob() -> Identity:
    return Identity(id="bob-2", display_name="Bob")


@pytest.fixture
def cara() -> Identity:
    return Identity(id="cara-3", display_name="Cara")


@pytest.fixture
def store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def content_client() -> FakeStudyContentClient:
    return FakeStudyContentClient()


@pytest.fixture
def content_service(content_client: FakeStudyContentClient) -> StudyContentService:
    return StudyContentService(
        client=content_client,
        model="gpt-5.2",
        reasoning_effort="low",
        store=False,
    )


@pytest.fixture
def coordinator(
    store: InMemorySessionStore, content_service: StudyContentService
) -> SessionCoordinator:
    return SessionCoordinator(
        store=store,
        code_generator=RoomCodeGenerator(rng=random.Random(1234)),
        content_service=content_service,
        clock=lambda: FIXED_NOW,
        id_factory=SequenceIds(),
    )


@pytest.fixture
def container(
    settings: Settings,
    store: InMemorySessionStore,
    content_service: StudyContentService,
    coordinator: SessionCoordinator,
) -> AppContainer:
    async def close_resources() -> None:
        return None

    return AppContainer(
        settings=settings,
        session_store=store,
        study_content_service=content_service,
        coordinator=coordinator,
        close_resources=close_resources,
    )


def assert_roster_invariants(store: InMemorySessionStore) -> None:
    """Check host and permission invariants on every persisted session."""
    for code in store.documents:
        session = store.read_once(code)
        assert session is not None
        ids = session.participant_ids
        assert ids, "empty sessions must be deleted"
        assert len(ids) == len(set(ids))
        assert session.host_id in ids
        assert set(session.permissions) == set(ids)


def make_session(
    code: str,
    participants: list[Identity],
    sharers: set[str] | None = None,
) -> Session:
    """Build a session hosted by the first participant."""
    host_id = participants[0].id
    allowed = {host_id} | (sharers or set())
    return Session(
        code=code,
        host_id=host_id,
        participants=tuple(identity.as_participant() for identity in participants),
        permissions={
            identity.id: Permission(can_share=identity.id in allowed)
            for identity in participants
        },
        created_at=FIXED_NOW,
    )
