"""FastAPI application factory."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request, status

from study_rooms.api.ws import router as ws_router
from study_rooms.app_logging import configure_logging
from study_rooms.containers import AppContainer
from study_rooms.services.room_codes import normalize_room_code


def create_app(container: AppContainer) -> FastAPI:
    """Create a FastAPI app configured with dependencies."""
    configure_logging(container.settings.log_level)
    logger = logging.getLogger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info(
            "Study rooms starting: store=%s environment=%s",
            container.settings.session_store,
            container.settings.environment,
        )
        yield
        try:
            await app.state.container.close_resources()
        except Exception:
            logger.exception("Failed to close resources")

    app = FastAPI(lifespan=lifespan)
    app.state.container = container

    app.include_router(ws_router)

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Simple health check endpoint."""
        return {"status": "ok"}

    @app.get("/rooms/{code}")
    async def read_room(code: str, request: Request) -> dict[str, object]:
        """Return the current snapshot of a room."""
        state_container: AppContainer = request.app.state.container
        normalized = normalize_room_code(code)
        session = (
            state_container.session_store.read_once(normalized)
            if normalized
            else None
        )
        if session is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Room does not exist",
            )
        return session.to_document()

    return app
