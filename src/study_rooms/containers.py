"""Dependency container wiring for the application."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from supabase import create_client

from study_rooms.adapters.memory_session_store import InMemorySessionStore
from study_rooms.adapters.openai_study_client import OpenAIStudyContentClient
from study_rooms.adapters.supabase_session_store import SupabaseSessionStore
from study_rooms.config import Settings
from study_rooms.services.coordinator import SessionCoordinator
from study_rooms.services.room_codes import RoomCodeGenerator
from study_rooms.services.store import SessionStore
from study_rooms.services.study_content import StudyContentService


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    session_store: SessionStore
    study_content_service: StudyContentService
    coordinator: SessionCoordinator
    close_resources: Callable[[], Awaitable[None]]


def build_session_store(settings: Settings) -> SessionStore:
    """Create the session store selected by settings."""
    if settings.session_store == "memory":
        return InMemorySessionStore()
    if not settings.supabase_url or not settings.supabase_service_key:
        raise ValueError(
            "SUPABASE_URL and SUPABASE_SERVICE_KEY are required for the "
            "supabase session store"
        )
    supabase_client = create_client(
        settings.supabase_url, settings.supabase_service_key
    )
    return SupabaseSessionStore(
        client=supabase_client,
        table_name=settings.sessions_table,
        max_attempts=settings.max_write_retries,
    )


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    session_store = build_session_store(resolved_settings)
    openai_client = OpenAIStudyContentClient.create(resolved_settings.openai_api_key)
    study_content_service = StudyContentService(
        client=openai_client,
        model=resolved_settings.openai_model,
        reasoning_effort=resolved_settings.openai_reasoning_effort,
        store=resolved_settings.openai_store,
        flashcard_count=resolved_settings.flashcard_count,
    )
    coordinator = SessionCoordinator(
        store=session_store,
        code_generator=RoomCodeGenerator(),
        content_service=study_content_service,
        room_code_max_attempts=resolved_settings.room_code_max_attempts,
        max_write_retries=resolved_settings.max_write_retries,
    )

    async def close_resources() -> None:
        await openai_client.close()

    return AppContainer(
        settings=resolved_settings,
        session_store=session_store,
        study_content_service=study_content_service,
        coordinator=coordinator,
        close_resources=close_resources,
    )
