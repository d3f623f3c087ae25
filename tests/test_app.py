import time

import pytest
from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient

from app import app


@pytest.fixture
def client():
    with TestClient(app) as client:
        yield client


def eventually(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def test_status_on_empty_server(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "rooms": 0, "connections": 0}


def test_create_room_returns_ws_url_without_creating_room(client):
    response = client.post("/rooms", json={"room_id": "movie1"})
    assert response.status_code == 201
    body = response.json()
    assert body["room_id"] == "movie1"
    assert body["ws_url"] == "ws://testserver/ws?room=movie1"
    assert client.get("/rooms/movie1").status_code == 404


def test_create_room_mints_id(client):
    body = client.post("/rooms", json={}).json()
    assert len(body["room_id"]) == 32
    assert body["ws_url"].endswith(f"room={body['room_id']}")


def test_missing_room_closes_with_reason(client):
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/ws?username=Bob") as ws:
            ws.receive_json()
    assert exc.value.code == 4000
    assert exc.value.reason == "Room ID required"


def test_signaling_session(client):
    with client.websocket_connect("/ws?room=movie1&role=host&username=Alice") as host_ws:
        welcome = host_ws.receive_json()
        assert welcome["type"] == "welcome"
        assert welcome["role"] == "host"
        assert welcome["room"] == "movie1"
        host_id = welcome["userId"]

        with client.websocket_connect("/ws?room=movie1&username=Bob") as viewer_ws:
            viewer_welcome = viewer_ws.receive_json()
            assert viewer_welcome["role"] == "viewer"
            viewer_id = viewer_welcome["userId"]
            assert viewer_ws.receive_json() == {"type": "host-info", "hostId": host_id, "hostName": "Alice"}
            assert host_ws.receive_json() == {"type": "viewer-joined", "viewerId": viewer_id, "viewerName": "Bob"}

            # a second host is turned away and the first is unaffected
            with pytest.raises(WebSocketDisconnect) as exc:
                with client.websocket_connect("/ws?room=movie1&role=host&username=Mallory") as intruder:
                    intruder.receive_json()
            assert exc.value.code == 4001
            assert client.get("/rooms/movie1").json()["host"]["connection_id"] == host_id

            viewer_ws.send_json({"type": "offer", "target": host_id, "sdp": "v=0 test"})
            assert host_ws.receive_json() == {
                "type": "offer",
                "sender": viewer_id,
                "senderName": "Bob",
                "sdp": "v=0 test",
            }

            # garbage and binary frames do not close the connection
            viewer_ws.send_text("{not json")
            viewer_ws.send_bytes(b'{"type": "ping"}')
            assert viewer_ws.receive_json() == {"type": "pong"}

            viewer_ws.send_json({"type": "teleport"})
            assert viewer_ws.receive_json() == {"type": "error", "message": "Unknown message type: teleport"}

            listing = client.get("/rooms").json()
            assert listing == [{"room_id": "movie1", "has_host": True, "host_name": "Alice", "viewer_count": 1}]

            host_ws.close()
            assert viewer_ws.receive_json() == {"type": "host-left"}
            assert eventually(lambda: client.get("/rooms/movie1").json()["host"] is None)

    assert eventually(lambda: client.get("/rooms/movie1").status_code == 404)
    assert client.get("/").json() == {"status": "ok", "rooms": 0, "connections": 0}


def test_room_details(client):
    with client.websocket_connect("/ws?room=movie1&username=Bob") as viewer_ws:
        viewer_id = viewer_ws.receive_json()["userId"]

        details = client.get("/rooms/movie1").json()

        assert details["room_id"] == "movie1"
        assert details["host"] is None
        assert details["viewer_count"] == 1
        assert details["viewers"][0]["connection_id"] == viewer_id
        assert details["viewers"][0]["display_name"] == "Bob"
