import pytest
from starlette.websockets import WebSocketDisconnect

from backend import MemoryBackend
from errors import StorageError
from room_store import RoomStore


def create_room(client, admin_name="Ada"):
    resp = client.post("/rooms/", json={"admin_name": admin_name})
    assert resp.status_code == 201
    return resp.json()["room_code"]


def join(client, code, user_name):
    resp = client.post(f"/rooms/{code}/join", json={"user_name": user_name})
    assert resp.status_code == 200
    return resp.json()["participant_id"]


def test_create_room(client):
    resp = client.post("/rooms/", json={"admin_name": "Ada"})
    assert resp.status_code == 201
    data = resp.json()
    assert len(data["room_code"]) == 4
    assert data["ws_url"].startswith("ws://")
    assert data["ws_url"].endswith(f"/rooms/{data['room_code']}/ws")


def test_create_room_requires_name(client):
    resp = client.post("/rooms/", json={"admin_name": "  "})
    assert resp.status_code == 400


def test_exists_is_case_insensitive(client):
    code = create_room(client)
    resp = client.get(f"/rooms/{code.lower()}/exists")
    assert resp.json() == {"room_code": code, "exists": True}
    assert client.get("/rooms/WXYZ/exists").json()["exists"] is False


def test_invalid_join_code_rejected(client):
    assert client.post("/rooms/a3f!/join", json={"user_name": "Linus"}).status_code == 400
    assert client.post("/rooms/a3f/join", json={"user_name": "Linus"}).status_code == 400


def test_join_missing_room_is_404(client):
    resp = client.post("/rooms/WXYZ/join", json={"user_name": "Linus"})
    assert resp.status_code == 404


def test_hand_reports_queue_position(client, clock):
    code = create_room(client)
    a = join(client, code, "A")
    b = join(client, code, "B")
    first = client.post(f"/rooms/{code}/hand", json={"participant_id": a, "raised": True}).json()
    clock.advance()
    second = client.post(f"/rooms/{code}/hand", json={"participant_id": b, "raised": True}).json()
    assert first["queue_position"] == 1
    assert first["people_ahead"] == 0
    assert second["queue_position"] == 2
    assert second["people_ahead"] == 1

    lowered = client.post(f"/rooms/{code}/hand", json={"participant_id": a, "raised": False}).json()
    assert lowered["hand_raised"] is False
    assert lowered["queue_position"] is None


def test_hand_for_unknown_participant_is_404(client):
    code = create_room(client)
    resp = client.post(f"/rooms/{code}/hand", json={"participant_id": "nobody", "raised": True})
    assert resp.status_code == 404


def test_leave_and_done_are_idempotent(client):
    code = create_room(client)
    pid = join(client, code, "A")
    assert client.post(f"/rooms/{code}/leave", json={"participant_id": pid}).status_code == 200
    assert client.post(f"/rooms/{code}/leave", json={"participant_id": pid}).status_code == 200
    assert client.post(f"/rooms/{code}/queue/{pid}/done").status_code == 200
    client.post(f"/rooms/{code}/close")
    assert client.post(f"/rooms/{code}/leave", json={"participant_id": pid}).status_code == 200
    assert client.post(f"/rooms/{code}/queue/{pid}/done").status_code == 200


def test_room_details(client, clock):
    code = create_room(client, "Ada")
    a = join(client, code, "A")
    clock.advance()
    b = join(client, code, "B")
    client.post(f"/rooms/{code}/hand", json={"participant_id": b, "raised": True})

    details = client.get(f"/rooms/{code}").json()
    assert details["admin_name"] == "Ada"
    assert [p["participant_id"] for p in details["participants"]] == [a, b]
    assert details["participant_count"] == 2
    assert details["queue_length"] == 1
    assert details["queue"][0]["name"] == "B"
    assert details["queue"][0]["position"] == 1
    assert client.get("/rooms/WXYZ").status_code == 404


def test_storage_error_is_503(client):
    class DownBackend(MemoryBackend):
        async def update_room(self, room_code, mutate):
            raise StorageError("connection refused")

    client.app.state.room_store = RoomStore(DownBackend())
    resp = client.post("/rooms/ABCD/join", json={"user_name": "A"})
    assert resp.status_code == 503


def test_restore_session_endpoint(client):
    code = create_room(client)
    pid = join(client, code, "Linus")
    client.post(f"/rooms/{code}/leave", json={"participant_id": pid})

    session = {"room_code": code, "user_name": "Linus", "role": "participant", "participant_id": pid}
    resp = client.post("/sessions/restore", json={"session": session, "current_path": f"/room/{code}"})
    data = resp.json()
    assert data["action"] == "rejoined"
    assert data["session"]["participant_id"] != pid
    assert data["redirect_to"] is None

    resp = client.post("/sessions/restore", json={"session": data["session"], "current_path": "/"})
    assert resp.json()["action"] == "kept"
    assert resp.json()["redirect_to"] == f"/room/{code}"


def test_restore_session_corrupt_or_missing(client):
    resp = client.post("/sessions/restore", json={"session": {"role": "wizard"}, "current_path": "/"})
    assert resp.json() == {"session": None, "action": "discarded", "redirect_to": None}
    resp = client.post("/sessions/restore", json={"current_path": "/"})
    assert resp.json()["action"] == "none"


def test_end_session_endpoint(client):
    code = create_room(client)
    session = {"room_code": code, "user_name": "Ada", "role": "admin"}
    assert client.post("/sessions/end", json={"session": session}).status_code == 200
    assert client.get(f"/rooms/{code}/exists").json()["exists"] is False
    # Ending again is harmless
    assert client.post("/sessions/end", json={"session": session}).status_code == 200


def test_websocket_rejects_unknown_room(client):
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with client.websocket_connect("/rooms/WXYZ/ws") as ws:
            ws.receive_json()
    assert exc_info.value.code == 1008


def test_websocket_ping(client):
    code = create_room(client)
    with client.websocket_connect(f"/rooms/{code}/ws") as ws:
        assert ws.receive_json()["type"] == "room"
        ws.send_text("ping")
        assert ws.receive_text() == "pong"


def test_meeting_end_to_end(client, clock):
    code = create_room(client, "Ada")
    assert len(code) == 4

    a = join(client, code, "A")
    b = join(client, code, "B")
    participants = client.get(f"/rooms/{code}").json()["participants"]
    assert {p["participant_id"] for p in participants} == {a, b}
    assert all(p["hand_raised"] is False for p in participants)

    with client.websocket_connect(f"/rooms/{code}/ws") as ws:
        initial = ws.receive_json()
        assert initial["type"] == "room"
        assert initial["room"]["queue"] == []

        client.post(f"/rooms/{code}/hand", json={"participant_id": a, "raised": True})
        update = ws.receive_json()
        assert [item["participant_id"] for item in update["room"]["queue"]] == [a]

        clock.advance(5)
        client.post(f"/rooms/{code}/hand", json={"participant_id": b, "raised": True})
        update = ws.receive_json()
        assert [item["participant_id"] for item in update["room"]["queue"]] == [a, b]

        client.post(f"/rooms/{code}/queue/{a}/done")
        update = ws.receive_json()
        assert [item["participant_id"] for item in update["room"]["queue"]] == [b]
        flags = {p["participant_id"]: p["hand_raised"] for p in update["room"]["participants"]}
        assert flags[a] is False

        client.post(f"/rooms/{code}/close")
        assert ws.receive_json() == {"type": "room_absent", "room_code": code}

    assert client.get(f"/rooms/{code}/exists").json()["exists"] is False


def test_websocket_ignores_binary_frames(client):
    code = create_room(client)
    with client.websocket_connect(f"/rooms/{code}/ws") as ws:
        assert ws.receive_json()["type"] == "room"
        ws.send_bytes(b"\x00\x01")
        ws.send_text("ping")
        assert ws.receive_text() == "pong"


def test_websocket_closed_when_room_stream_breaks(client):
    class BrokenChannel:
        def __aiter__(self):
            return self

        async def __anext__(self):
            raise StorageError("connection lost")

        async def close(self):
            pass

    class BrokenStreamBackend(MemoryBackend):
        async def open_channel(self, room_code):
            return BrokenChannel()

    client.app.state.room_store = RoomStore(BrokenStreamBackend())
    code = create_room(client)
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with client.websocket_connect(f"/rooms/{code}/ws") as ws:
            assert ws.receive_json()["type"] == "room"
            ws.receive_json()
    assert exc_info.value.code == 1011
