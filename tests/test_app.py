"""Tests for the HTTP and WebSocket surface."""

from typing import Any

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from study_rooms.adapters.memory_session_store import InMemorySessionStore
from study_rooms.api.app import create_app
from study_rooms.containers import AppContainer

HOST_URL = "/ws?user_id=host-1&display_name=Hana&avatar_ref=avatars/hana.png"
BOB_URL = "/ws?user_id=bob-2&display_name=Bob"


def receive_until(websocket: Any, message_type: str) -> dict[str, Any]:
    """Read messages until one of the given type arrives."""
    while True:
        message = websocket.receive_json()
        if message["type"] == message_type:
            return message


def create_room(websocket: Any) -> str:
    websocket.send_json({"type": "create_room"})
    snapshot = websocket.receive_json()
    assert snapshot["type"] == "snapshot"
    room = websocket.receive_json()
    assert room["type"] == "room"
    assert snapshot["session"]["code"] == room["code"]
    return room["code"]


def test_health(container: AppContainer) -> None:
    client = TestClient(create_app(container))

    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_read_room_unknown_or_malformed_code(container: AppContainer) -> None:
    client = TestClient(create_app(container))

    assert client.get("/rooms/NO-SUCH-10").status_code == 404
    response = client.get("/rooms/not a code")
    assert response.status_code == 404
    assert response.json()["detail"] == "Room does not exist"


def test_socket_without_user_is_rejected(container: AppContainer) -> None:
    client = TestClient(create_app(container))

    with pytest.raises(WebSocketDisconnect) as excinfo:
        with client.websocket_connect("/ws") as websocket:
            websocket.receive_json()

    assert excinfo.value.code == 1008


def test_create_room_streams_snapshot_and_serves_document(
    container: AppContainer,
) -> None:
    client = TestClient(create_app(container))

    with client.websocket_connect(HOST_URL) as websocket:
        websocket.send_json({"type": "create_room"})
        snapshot = websocket.receive_json()
        room = websocket.receive_json()

        assert snapshot["type"] == "snapshot"
        session = snapshot["session"]
        assert session["hostId"] == "host-1"
        assert session["participants"] == [
            {"id": "host-1", "displayName": "Hana", "avatarRef": "avatars/hana.png"}
        ]
        assert session["permissions"] == {"host-1": {"canShare": True}}
        assert room == {"type": "room", "code": session["code"]}

        response = client.get(f"/rooms/{room['code'].lower()}")
        assert response.status_code == 200
        assert response.json()["hostId"] == "host-1"


def test_two_clients_share_chat_and_roster(
    container: AppContainer, store: InMemorySessionStore
) -> None:
    client = TestClient(create_app(container))

    with client.websocket_connect(HOST_URL) as host_socket:
        code = create_room(host_socket)

        with client.websocket_connect(BOB_URL) as bob_socket:
            bob_socket.send_json({"type": "join_room", "code": f" {code.lower()} "})
            bob_view = receive_until(bob_socket, "snapshot")
            assert receive_until(bob_socket, "room") == {"type": "room", "code": code}
            assert [p["id"] for p in bob_view["session"]["participants"]] == [
                "host-1",
                "bob-2",
            ]
            assert bob_view["session"]["permissions"]["bob-2"] == {"canShare": False}

            host_view = receive_until(host_socket, "snapshot")
            assert len(host_view["session"]["participants"]) == 2

            bob_socket.send_json({"type": "send_chat", "text": "hello all"})
            host_view = receive_until(host_socket, "snapshot")
            message = host_view["session"]["chatMessages"][0]
            assert message["senderId"] == "bob-2"
            assert message["senderName"] == "Bob"
            assert message["text"] == "hello all"

        host_view = receive_until(host_socket, "snapshot")
        assert [p["id"] for p in host_view["session"]["participants"]] == ["host-1"]
        assert "bob-2" not in host_view["session"]["permissions"]

    assert store.documents == {}


def test_commands_outside_a_room_and_bad_payloads(container: AppContainer) -> None:
    client = TestClient(create_app(container))

    with client.websocket_connect(BOB_URL) as websocket:
        websocket.send_json({"type": "ping"})
        assert websocket.receive_json() == {"type": "pong"}

        websocket.send_json({"type": "send_chat", "text": "anyone?"})
        error = websocket.receive_json()
        assert error["type"] == "error"
        assert error["error"] == "not_in_room"

        websocket.send_json({"type": "teleport"})
        assert websocket.receive_json()["error"] == "invalid_request"

        websocket.send_text("not json")
        assert websocket.receive_json()["error"] == "invalid_request"

        websocket.send_json({"type": "join_room", "code": "LOST-ROOM-99"})
        assert websocket.receive_json()["error"] == "room_not_found"


def test_sharing_requires_permission(container: AppContainer) -> None:
    client = TestClient(create_app(container))

    with client.websocket_connect(HOST_URL) as host_socket:
        code = create_room(host_socket)

        with client.websocket_connect(BOB_URL) as bob_socket:
            bob_socket.send_json({"type": "join_room", "code": code})
            receive_until(bob_socket, "room")

            bob_socket.send_json({"type": "share_notes", "lines": ["# Mine"]})
            error = receive_until(bob_socket, "error")
            assert error["error"] == "permission_denied"

            host_socket.send_json(
                {"type": "set_permission", "participant_id": "bob-2", "can_share": True}
            )
            snapshot = receive_until(bob_socket, "snapshot")
            assert snapshot["session"]["permissions"]["bob-2"] == {"canShare": True}

            bob_socket.send_json({"type": "share_notes", "lines": ["# Mine"]})
            snapshot = receive_until(bob_socket, "snapshot")
            note = snapshot["session"]["sharedNotes"][0]
            assert note["authorId"] == "bob-2"
            assert note["lines"] == ["# Mine"]


def test_generate_notes_shares_oracle_output(container: AppContainer) -> None:
    client = TestClient(create_app(container))

    with client.websocket_connect(HOST_URL) as websocket:
        create_room(websocket)

        websocket.send_json({"type": "generate_notes", "text": "Photosynthesis"})
        snapshot = receive_until(websocket, "snapshot")

        assert snapshot["session"]["sharedNotes"][0]["lines"] == [
            "# Photosynthesis",
            "- Happens in chloroplasts",
        ]


def test_quiz_over_websocket(container: AppContainer) -> None:
    client = TestClient(create_app(container))

    with client.websocket_connect(HOST_URL) as host_socket:
        code = create_room(host_socket)

        with client.websocket_connect(BOB_URL) as bob_socket:
            bob_socket.send_json({"type": "join_room", "code": code})
            receive_until(bob_socket, "room")

            host_socket.send_json(
                {
                    "type": "share_flashcards",
                    "flashcards": [{"question": "2 + 2?", "answer": "4"}],
                }
            )
            receive_until(bob_socket, "snapshot")
            host_socket.send_json({"type": "start_quiz"})
            snapshot = receive_until(bob_socket, "snapshot")
            while snapshot["session"]["quizState"] is None:
                snapshot = receive_until(bob_socket, "snapshot")
            assert snapshot["session"]["quizState"]["quizMasterId"] == "host-1"

            bob_socket.send_json({"type": "submit_answer", "answer": " 4 "})
            assert receive_until(bob_socket, "answer") == {
                "type": "answer",
                "result": "CORRECT",
            }
            bob_socket.send_json({"type": "submit_answer", "answer": "4"})
            assert receive_until(bob_socket, "answer")["result"] == "ALREADY_ANSWERED"

            bob_socket.send_json({"type": "reveal_answer"})
            assert receive_until(bob_socket, "error")["error"] == "permission_denied"

            host_socket.send_json({"type": "reveal_answer"})
            host_socket.send_json({"type": "advance_quiz"})
            snapshot = receive_until(bob_socket, "snapshot")
            while not snapshot["session"]["quizState"]["isComplete"]:
                snapshot = receive_until(bob_socket, "snapshot")
            assert snapshot["session"]["quizState"]["scores"] == {
                "host-1": 0,
                "bob-2": 1,
            }


def test_disconnect_cleans_up_when_leave_fails(
    container: AppContainer,
    store: InMemorySessionStore,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    client = TestClient(create_app(container))

    def broken_leave(*_args: object) -> None:
        raise RuntimeError("stored row is unreadable")

    with client.websocket_connect(HOST_URL) as websocket:
        code = create_room(websocket)
        monkeypatch.setattr(container.coordinator, "leave_room", broken_leave)

    assert store.fanout.listener_count(code) == 0
