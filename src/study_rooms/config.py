"""Application configuration."""

import os
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    session_store: Literal["supabase", "memory"] = "supabase"
    supabase_url: str | None = None
    supabase_service_key: str | None = None
    sessions_table: str = "group_sessions"
    openai_api_key: str
    openai_model: str = "gpt-5.2"
    openai_reasoning_effort: str = "low"
    openai_store: bool = False
    flashcard_count: int = 8
    room_code_max_attempts: int = 20
    max_write_retries: int = 5
    websocket_ping_interval_seconds: float = 25.0
    log_level: str = "INFO"
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )
