"""Tests for the websocket world bridge against a local websockets server."""

import asyncio
import json
import math

import pytest
import websockets

from agentgate.bus.events import WorldEvent
from agentgate.commands.types import Face, Move, Ping, Speak
from agentgate.config.schema import WorldConfig
from agentgate.world import WebSocketWorldBridge, WorldBridgeError


class WorldServer:
    """Minimal world: confirms spawns, echoes chat, can kick or drop clients."""

    def __init__(self):
        self.url = ""
        self.received: list[dict] = []
        self.connections = []

    async def handler(self, ws):
        self.connections.append(ws)
        async for raw in ws:
            msg = json.loads(raw)
            self.received.append(msg)
            if msg["type"] == "spawn":
                if msg["name"] == "Reject":
                    await ws.send(json.dumps({"type": "error", "message": "world is full"}))
                elif msg["name"] != "Silent":
                    await ws.send(json.dumps({"type": "spawned", "id": "agent-1"}))
            elif msg["type"] == "chat":
                await ws.send(json.dumps({
                    "type": "chat",
                    "message": {"id": "m1", "fromId": "agent-1", "from": "Bot", "body": msg["message"]},
                }))

    def of_type(self, kind: str) -> list[dict]:
        return [m for m in self.received if m["type"] == kind]


async def eventually(predicate, timeout: float = 2.0) -> None:
    async def poll():
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout)


@pytest.fixture
async def world():
    server = WorldServer()
    async with websockets.serve(server.handler, "127.0.0.1", 0) as ws_server:
        port = ws_server.sockets[0].getsockname()[1]
        server.url = f"ws://127.0.0.1:{port}"
        yield server


@pytest.fixture
async def bridge(world):
    bridge = WebSocketWorldBridge(WorldConfig(ws_url=world.url, spawn_timeout_s=0.5))
    events: list[WorldEvent] = []

    async def record(event: WorldEvent) -> None:
        events.append(event)

    bridge.on_event(record)
    bridge.events = events
    yield bridge
    await bridge.disconnect()


@pytest.mark.asyncio
async def test_spawn_handshake(world, bridge):
    await bridge.connect()
    agent_id = await bridge.spawn("Bot", "https://arweave.net/x")

    assert agent_id == "agent-1"
    assert bridge.is_connected
    assert world.of_type("spawn") == [{"type": "spawn", "name": "Bot", "avatar": "https://arweave.net/x"}]


@pytest.mark.asyncio
async def test_spawn_rejected_is_permanent(bridge):
    await bridge.connect()
    with pytest.raises(WorldBridgeError) as exc:
        await bridge.spawn("Reject", None)
    assert not exc.value.transient


@pytest.mark.asyncio
async def test_spawn_timeout_is_transient(bridge):
    await bridge.connect()
    with pytest.raises(WorldBridgeError) as exc:
        await bridge.spawn("Silent", None)
    assert exc.value.transient


@pytest.mark.asyncio
async def test_connect_failure_is_transient():
    bridge = WebSocketWorldBridge(WorldConfig(ws_url="ws://127.0.0.1:9", connect_timeout_s=1))
    with pytest.raises(WorldBridgeError) as exc:
        await bridge.connect()
    assert exc.value.transient


@pytest.mark.asyncio
async def test_speak_round_trips_as_chat(world, bridge):
    await bridge.connect()
    await bridge.spawn("Bot", None)

    ack = await bridge.send_action(Speak(text="hello"))
    await eventually(lambda: bridge.events)

    assert (ack.action, ack.data) == ("speak", {"text": "hello"})
    assert world.of_type("chat") == [{"type": "chat", "message": "hello"}]
    assert bridge.events[0].kind == "chat"
    assert bridge.events[0].data["body"] == "hello"


@pytest.mark.asyncio
async def test_move_presses_then_releases_key(world, bridge):
    await bridge.connect()
    await bridge.spawn("Bot", None)

    ack = await bridge.send_action(Move("forward", 20))
    await eventually(lambda: len(world.of_type("input")) == 2)

    assert ack.data == {"direction": "forward", "duration": 20}
    assert [(m["key"], m["state"]) for m in world.of_type("input")] == [("keyW", True), ("keyW", False)]


@pytest.mark.asyncio
async def test_face_variants(world, bridge):
    await bridge.connect()
    await bridge.spawn("Bot", None)

    assert (await bridge.send_action(Face(direction="left"))).data == {"direction": "left"}
    assert (await bridge.send_action(Face(yaw=1.0))).data == {"yaw": 1.0}
    assert (await bridge.send_action(Face())).data == {"direction": "auto"}
    await eventually(lambda: len(world.of_type("look")) == 3)

    yaws = [m["yaw"] for m in world.of_type("look")]
    assert yaws[0] == pytest.approx(math.pi / 2)
    assert yaws[1:] == [1.0, None]


@pytest.mark.asyncio
async def test_non_world_command_is_rejected(bridge):
    await bridge.connect()
    with pytest.raises(WorldBridgeError):
        await bridge.send_action(Ping())


@pytest.mark.asyncio
async def test_kick_is_reported(world, bridge):
    await bridge.connect()
    await bridge.spawn("Bot", None)

    await world.connections[0].send(json.dumps({"type": "kick", "code": "BANNED"}))
    await eventually(lambda: bridge.events)

    assert (bridge.events[0].kind, bridge.events[0].data) == ("kick", {"code": "BANNED"})


@pytest.mark.asyncio
async def test_server_close_emits_disconnect(world, bridge):
    await bridge.connect()
    await bridge.spawn("Bot", None)

    await world.connections[0].close()
    await eventually(lambda: bridge.events)

    assert bridge.events[0].kind == "disconnect"
    assert not bridge.is_connected
    with pytest.raises(WorldBridgeError) as exc:
        await bridge.send_action(Speak(text="anyone?"))
    assert exc.value.transient


@pytest.mark.asyncio
async def test_local_disconnect_is_silent(bridge):
    await bridge.connect()
    await bridge.spawn("Bot", None)

    await bridge.disconnect()
    await bridge.disconnect()
    await asyncio.sleep(0.05)

    assert bridge.events == []
    assert not bridge.is_connected
