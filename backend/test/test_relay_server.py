"""Relay server tests with FastAPI TestClient."""

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from app import create_app
from voice_mesh.webrtc.config import get_voice_settings


@pytest.fixture
def client():
    with TestClient(create_app()) as test_client:
        yield test_client


def join(client, room="room-1", name="Alice"):
    ws = client.websocket_connect(f"/ws?room={room}&name={name}")
    session = ws.__enter__()
    peer_id = session.receive_json()["data"]["peerId"]
    roster = session.receive_json()
    assert roster["type"] == "room-members"
    return ws, session, peer_id


class TestHttp:
    """Test HTTP endpoints."""

    def test_health_empty(self, client) -> None:
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "rooms": 0, "peers": 0}

    def test_ice_servers_are_stun_only(self, client) -> None:
        servers = client.get("/api/ice-servers").json()
        assert servers
        assert all(s["urls"].startswith("stun:") for s in servers)


class TestRoom:
    """Test roster and signaling forwarding."""

    def test_connect_sends_peer_id_and_roster(self, client) -> None:
        with client.websocket_connect("/ws?room=room-1&name=Alice") as ws:
            first = ws.receive_json()
            assert first["type"] == "peer-id"
            peer_id = first["data"]["peerId"]

            roster = ws.receive_json()
            assert roster == {
                "type": "room-members",
                "data": {"members": [{"peerId": peer_id, "displayName": "Alice", "status": "online"}]},
            }
            assert client.get("/api/health").json() == {"status": "ok", "rooms": 1, "peers": 1}

    def test_second_member_broadcast_to_first(self, client) -> None:
        ws_a, alice, alice_id = join(client, name="Alice")
        ws_b, bob, bob_id = join(client, name="Bob")
        try:
            roster = alice.receive_json()
            assert roster["type"] == "room-members"
            assert [m["peerId"] for m in roster["data"]["members"]] == [alice_id, bob_id]
        finally:
            ws_b.__exit__(None, None, None)
            ws_a.__exit__(None, None, None)

    def test_offer_forwarded_with_sender(self, client) -> None:
        ws_a, alice, alice_id = join(client, name="Alice")
        ws_b, bob, bob_id = join(client, name="Bob")
        try:
            alice.receive_json()  # bob 입장 roster

            offer = {"sdp": "v=0", "type": "offer"}
            alice.send_json({"type": "offer", "data": {"offer": offer, "targetPeerId": bob_id}})

            received = bob.receive_json()
            assert received == {"type": "offer", "data": {"offer": offer, "senderPeerId": alice_id}}

            candidate = {"candidate": "candidate:1 1 udp 1 10.0.0.1 5000 typ host", "sdpMid": "0", "sdpMLineIndex": 0}
            bob.send_json({"type": "ice-candidate", "data": {"candidate": candidate, "targetPeerId": alice_id}})
            received = alice.receive_json()
            assert received["type"] == "ice-candidate"
            assert received["data"] == {"candidate": candidate, "senderPeerId": bob_id}
        finally:
            ws_b.__exit__(None, None, None)
            ws_a.__exit__(None, None, None)

    def test_unknown_target_dropped(self, client) -> None:
        with client.websocket_connect("/ws?room=room-1&name=Alice") as ws:
            ws.receive_json()
            ws.receive_json()

            ws.send_json({"type": "answer", "data": {"answer": {"sdp": "x", "type": "answer"}, "targetPeerId": "ghost"}})
            ws.send_json({"type": "set-status", "data": {"status": "away"}})

            # 버려진 answer 대신 다음 메시지는 상태 변경 roster
            roster = ws.receive_json()
            assert roster["type"] == "room-members"
            assert roster["data"]["members"][0]["status"] == "away"

    def test_rooms_are_isolated(self, client) -> None:
        ws_a, alice, alice_id = join(client, room="room-1", name="Alice")
        ws_b, bob, bob_id = join(client, room="room-2", name="Bob")
        try:
            alice.send_json({"type": "offer", "data": {"offer": {"sdp": "x", "type": "offer"}, "targetPeerId": bob_id}})
            alice.send_json({"type": "set-status", "data": {"status": "busy"}})

            roster = alice.receive_json()
            assert [m["peerId"] for m in roster["data"]["members"]] == [alice_id]
            assert client.get("/api/health").json()["rooms"] == 2
        finally:
            ws_b.__exit__(None, None, None)
            ws_a.__exit__(None, None, None)

    def test_disconnect_broadcasts_departure(self, client) -> None:
        ws_a, alice, alice_id = join(client, name="Alice")
        ws_b, bob, bob_id = join(client, name="Bob")
        try:
            alice.receive_json()
            ws_b.__exit__(None, None, None)

            departed = alice.receive_json()
            assert departed == {
                "type": "peer-disconnected",
                "data": {"user": {"peerId": bob_id, "displayName": "Bob"}},
            }
            roster = alice.receive_json()
            assert [m["peerId"] for m in roster["data"]["members"]] == [alice_id]
        finally:
            ws_a.__exit__(None, None, None)


class TestAccess:
    """Test connection rejection."""

    def test_room_required(self, client) -> None:
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/ws?name=Alice") as ws:
                ws.receive_json()
        assert exc_info.value.code == 4000

    def test_token_checked_when_password_set(self, client, monkeypatch) -> None:
        monkeypatch.setenv("ACCESS_PASSWORD", "secret")
        get_voice_settings.cache_clear()
        try:
            with pytest.raises(WebSocketDisconnect) as exc_info:
                with client.websocket_connect("/ws?room=room-1&name=Alice&token=wrong") as ws:
                    ws.receive_json()
            assert exc_info.value.code == 4001

            with client.websocket_connect("/ws?room=room-1&name=Alice&token=secret") as ws:
                assert ws.receive_json()["type"] == "peer-id"
        finally:
            monkeypatch.delenv("ACCESS_PASSWORD")
            get_voice_settings.cache_clear()
