"""Tests for the full-duplex socket adapter."""

import base64
import time

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from agentgate.gateway.app import create_app


@pytest.fixture
def client(config, gateway):
    with TestClient(create_app(config, gateway=gateway)) as client:
        yield client


def spawn(ws, name="Bot", **extra) -> dict:
    ws.send_json({"type": "spawn", "name": name, **extra})
    event = ws.receive_json()
    assert event["type"] == "spawned", event
    return event


def wait_until(predicate, timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        assert time.monotonic() < deadline, "condition not met in time"
        time.sleep(0.01)


def test_pre_spawn_commands(client):
    with client.websocket_connect("/") as ws:
        ws.send_json({"type": "ping"})
        assert ws.receive_json()["type"] == "pong"

        ws.send_json({"type": "who"})
        assert ws.receive_json() == {"type": "who", "agents": []}

        ws.send_json({"type": "speak", "text": "too early"})
        assert ws.receive_json() == {"type": "error", "code": "SPAWN_REQUIRED", "message": "Send a spawn message first"}

        ws.send_json({"type": "dance"})
        assert ws.receive_json()["code"] == "UNKNOWN_COMMAND"

        ws.send_text("{oops")
        assert ws.receive_json()["code"] == "INVALID_JSON"


def test_message_without_type_is_missing_argument(client):
    with client.websocket_connect("/") as ws:
        ws.send_json({"text": "hi"})
        assert ws.receive_json()["code"] == "MISSING_ARGUMENT"

        spawn(ws)
        ws.send_json({"type": 7})
        assert ws.receive_json()["code"] == "MISSING_ARGUMENT"


def test_upload_avatar_reports_url_and_hash(client, asset_requests, vrm):
    with client.websocket_connect("/") as ws:
        spawn(ws)
        data = base64.b64encode(vrm(size=4096)).decode()
        ws.send_json({"type": "upload_avatar", "data": data, "filename": "me.vrm"})

        assert ws.receive_json() == {
            "type": "avatar_uploaded",
            "url": "http://localhost:4000/assets/uploaded.vrm",
            "hash": "abc123",
        }
    assert [r.url.path for r in asset_requests] == ["/api/avatar/upload"]


def test_spawn_and_act(client):
    with client.websocket_connect("/") as ws:
        spawned = spawn(ws, avatar="library:rabbit")
        assert spawned["displayName"] == "Bot"
        assert spawned["avatar"].startswith("https://arweave.net/")

        ws.send_json({"type": "spawn", "name": "Again"})
        assert ws.receive_json()["code"] == "ALREADY_SPAWNED"

        ws.send_json({"type": "move", "direction": "forward", "duration": 400})
        assert ws.receive_json()["type"] == "move"

        ws.send_json({"type": "face", "yaw": 1.25})
        face = ws.receive_json()
        assert (face["type"], face["yaw"]) == ("face", 1.25)

        ws.send_json({"type": "move", "direction": "forward", "duration": 10001})
        error = ws.receive_json()
        assert (error["type"], error["code"]) == ("error", "INVALID_PARAMS")


def test_spawn_errors_keep_connection_usable(client):
    with client.websocket_connect("/") as ws:
        ws.send_json({"type": "spawn", "name": "<b>"})
        assert ws.receive_json()["code"] == "INVALID_PARAMS"

        spawn(ws, "Fine")


def test_chat_between_sockets(client):
    with client.websocket_connect("/") as a, client.websocket_connect("/") as b:
        spawn(a, "Bot")
        b_info = spawn(b, "Bot")
        assert b_info["displayName"].startswith("Bot#")

        b.send_json({"type": "speak", "text": "hello a"})
        assert b.receive_json()["type"] == "speak"

        chat = a.receive_json()
        assert chat["type"] == "chat"
        assert chat["from"] == b_info["displayName"]
        assert chat["body"] == "hello a"


def test_command_like_speech_gets_warning_before_ack(client):
    with client.websocket_connect("/") as ws:
        spawn(ws)
        ws.send_json({"type": "speak", "text": "type: move"})

        assert ws.receive_json()["type"] == "warning"
        assert ws.receive_json() == {"type": "speak", "text": "type: move"}


def test_despawn_sends_terminal_event_and_closes(client):
    with client.websocket_connect("/") as ws:
        spawn(ws)
        ws.send_json({"type": "despawn"})

        event = ws.receive_json()
        assert (event["type"], event["reason"]) == ("disconnected", "DESPAWNED")
        with pytest.raises(WebSocketDisconnect):
            ws.receive_json()

    assert client.get("/health").json()["agents"] == 0


def test_kick_closes_socket(client, gateway, fake_world):
    with client.websocket_connect("/") as ws:
        spawn(ws)
        (session,) = gateway.registry.live_sessions()
        client.portal.call(fake_world.kick, session.world_agent_id, "BANNED")

        assert ws.receive_json()["type"] == "kicked"
        with pytest.raises(WebSocketDisconnect):
            ws.receive_json()


def test_closing_socket_despawns(client):
    with client.websocket_connect("/") as ws:
        spawn(ws)
        assert client.get("/health").json()["agents"] == 1

    wait_until(lambda: client.get("/health").json()["agents"] == 0)
