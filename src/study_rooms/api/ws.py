"""WebSocket endpoint: one connection per client, one room at a time."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, WebSocket, status
from fastapi.concurrency import run_in_threadpool
from fastapi.websockets import WebSocketDisconnect, WebSocketState
from pydantic import ValidationError

from study_rooms.api.ws_models import (
    AdvanceQuizCommand,
    ClientCommand,
    CreateRoomCommand,
    GenerateFlashcardsCommand,
    GenerateNotesCommand,
    JoinRoomCommand,
    LeaveRoomCommand,
    PingCommand,
    RevealAnswerCommand,
    SendChatCommand,
    SetPermissionCommand,
    ShareFlashcardsCommand,
    ShareNotesCommand,
    StartQuizCommand,
    SubmitAnswerCommand,
    TransferHostCommand,
    client_command_adapter,
)
from study_rooms.domain.errors import StudyRoomError
from study_rooms.domain.sessions import Flashcard, Identity, Session
from study_rooms.services.subscriptions import SubscriptionManager

if TYPE_CHECKING:
    from study_rooms.containers import AppContainer
    from study_rooms.services.coordinator import SessionCoordinator

router = APIRouter(tags=["ws"])

logger = logging.getLogger(__name__)


@dataclass
class _Connection:
    """State of one connected client."""

    identity: Identity
    coordinator: SessionCoordinator
    subscriptions: SubscriptionManager
    loop: asyncio.AbstractEventLoop
    outbox: asyncio.Queue[dict[str, Any]]
    code: str | None = None

    def emit(self, payload: dict[str, Any]) -> None:
        """Queue a message; safe to call from any thread."""
        self.loop.call_soon_threadsafe(self.outbox.put_nowait, payload)

    def on_snapshot(self, session: Session | None) -> None:
        self.emit(snapshot_payload(session))


def snapshot_payload(session: Session | None) -> dict[str, Any]:
    """Build the snapshot message sent after every change."""
    return {
        "type": "snapshot",
        "session": session.to_document() if session is not None else None,
    }


def error_payload(kind: str, detail: str) -> dict[str, Any]:
    return {"type": "error", "error": kind, "detail": detail}


@router.websocket("/ws")
async def study_room_socket(websocket: WebSocket) -> None:
    """Accept room commands and stream session snapshots."""
    identity = _resolve_identity(websocket)
    if identity is None:
        await websocket.close(
            code=status.WS_1008_POLICY_VIOLATION, reason="Missing user_id"
        )
        return

    container: AppContainer = websocket.app.state.container
    await websocket.accept()
    connection = _Connection(
        identity=identity,
        coordinator=container.coordinator,
        subscriptions=SubscriptionManager(container.session_store),
        loop=asyncio.get_running_loop(),
        outbox=asyncio.Queue(),
    )
    connection.subscriptions.on_snapshot = connection.on_snapshot
    sender = asyncio.create_task(_drain_outbox(websocket, connection.outbox))
    ping_interval = container.settings.websocket_ping_interval_seconds

    try:
        while True:
            try:
                raw_message = await asyncio.wait_for(
                    websocket.receive_text(), timeout=ping_interval
                )
            except TimeoutError:
                if websocket.application_state != WebSocketState.CONNECTED:
                    break
                connection.emit({"type": "ping"})
                continue
            except (RuntimeError, WebSocketDisconnect):
                break
            await _handle_message(connection, raw_message)
    finally:
        try:
            if connection.code is not None:
                await run_in_threadpool(
                    connection.coordinator.leave_room,
                    connection.code,
                    identity,
                    connection.subscriptions,
                )
        except Exception:
            logger.exception(
                "Failed to leave room on disconnect: code=%s", connection.code
            )
        finally:
            connection.subscriptions.detach()
            sender.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sender


async def _handle_message(connection: _Connection, raw_message: str) -> None:
    try:
        command = client_command_adapter.validate_json(raw_message)
    except ValidationError as exc:
        connection.emit(error_payload("invalid_request", _describe(exc)))
        return
    try:
        await _dispatch(connection, command)
    except StudyRoomError as exc:
        connection.emit(error_payload(exc.kind, str(exc)))
    except ValueError as exc:
        connection.emit(error_payload("invalid_request", str(exc)))
    except Exception:
        logger.exception(
            "Command failed: type=%s user_id=%s", command.type, connection.identity.id
        )
        connection.emit(error_payload("internal_error", "Something went wrong"))


async def _dispatch(  # noqa: PLR0911, PLR0912
    connection: _Connection, command: ClientCommand
) -> None:
    coordinator = connection.coordinator
    identity = connection.identity

    if isinstance(command, PingCommand):
        connection.emit({"type": "pong"})
        return
    if isinstance(command, CreateRoomCommand):
        await _leave_current(connection)
        connection.code = await run_in_threadpool(
            coordinator.create_room, identity, connection.subscriptions
        )
        connection.emit({"type": "room", "code": connection.code})
        return
    if isinstance(command, JoinRoomCommand):
        await _leave_current(connection)
        session = await run_in_threadpool(
            coordinator.join_room, command.code, identity, connection.subscriptions
        )
        connection.code = session.code
        connection.emit({"type": "room", "code": session.code})
        return

    code = connection.code
    if code is None:
        connection.emit(error_payload("not_in_room", "Join or create a room first"))
        return

    if isinstance(command, LeaveRoomCommand):
        await _leave_current(connection)
        connection.emit({"type": "room", "code": None})
    elif isinstance(command, SendChatCommand):
        await run_in_threadpool(
            coordinator.send_chat_message, code, identity, command.text
        )
    elif isinstance(command, ShareNotesCommand):
        await run_in_threadpool(coordinator.share_notes, code, identity, command.lines)
    elif isinstance(command, ShareFlashcardsCommand):
        await run_in_threadpool(
            coordinator.share_flashcards,
            code,
            identity,
            _to_flashcards(command.flashcards),
        )
    elif isinstance(command, GenerateNotesCommand):
        await coordinator.generate_notes(code, identity, command.text)
    elif isinstance(command, GenerateFlashcardsCommand):
        await coordinator.generate_flashcards(code, identity, command.text)
    elif isinstance(command, SetPermissionCommand):
        await run_in_threadpool(
            coordinator.set_permission,
            code,
            identity,
            command.participant_id,
            command.can_share,
        )
    elif isinstance(command, TransferHostCommand):
        await run_in_threadpool(
            coordinator.transfer_host, code, identity, command.participant_id
        )
    elif isinstance(command, StartQuizCommand):
        if command.questions is None:
            await run_in_threadpool(
                coordinator.start_quiz_from_shared_flashcards, code, identity
            )
        else:
            await run_in_threadpool(
                coordinator.start_quiz,
                code,
                identity,
                _to_flashcards(command.questions),
            )
    elif isinstance(command, SubmitAnswerCommand):
        result = await run_in_threadpool(
            coordinator.submit_answer, code, identity, command.answer
        )
        connection.emit({"type": "answer", "result": result.value})
    elif isinstance(command, RevealAnswerCommand):
        await run_in_threadpool(coordinator.reveal_answer, code, identity)
    elif isinstance(command, AdvanceQuizCommand):
        await run_in_threadpool(coordinator.advance_quiz, code, identity)


async def _leave_current(connection: _Connection) -> None:
    if connection.code is None:
        return
    code = connection.code
    connection.code = None
    await run_in_threadpool(
        connection.coordinator.leave_room,
        code,
        connection.identity,
        connection.subscriptions,
    )


def _to_flashcards(payloads: list[Any]) -> list[Flashcard]:
    return [Flashcard(question=p.question, answer=p.answer) for p in payloads]


def _resolve_identity(websocket: WebSocket) -> Identity | None:
    user_id = (websocket.query_params.get("user_id") or "").strip()
    if not user_id:
        return None
    return Identity(
        id=user_id,
        display_name=websocket.query_params.get("display_name") or "Anonymous",
        avatar_ref=websocket.query_params.get("avatar_ref") or "",
    )


def _describe(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid command"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"{location}: {first.get('msg', 'invalid')}" if location else "Invalid command"


async def _drain_outbox(
    websocket: WebSocket, outbox: asyncio.Queue[dict[str, Any]]
) -> None:
    while True:
        payload = await outbox.get()
        if not await safe_send_json(websocket, payload):
            return


async def safe_send_json(websocket: WebSocket, data: dict[str, Any]) -> bool:
    """Send JSON, returning False once the socket is gone."""
    if websocket.application_state != WebSocketState.CONNECTED:
        return False
    try:
        await websocket.send_json(data)
    except (WebSocketDisconnect, RuntimeError) as exc:
        logger.debug("Failed to send websocket message: %s", exc)
        return False
    return True
