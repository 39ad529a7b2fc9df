"""Shared test fixtures: an in-memory world, fast retry config, a wired gateway."""

import itertools
import struct

import httpx
import pytest

from agentgate.avatar.proxy import AvatarProxy
from agentgate.bus.events import WorldEvent
from agentgate.commands.types import Command, Face, Move, Speak
from agentgate.config.schema import AvatarConfig, Config, RetryConfig, SessionsConfig, WorldConfig
from agentgate.gateway.service import GatewayService
from agentgate.world.bridge import Ack, WorldBridge, WorldBridgeError


def make_vrm(size: int = 64, version: int = 2, magic: int = 0x46546C67) -> bytes:
    """Minimal GLB-shaped payload."""
    header = struct.pack("<III", magic, version, size)
    return header + b"\x00" * max(0, size - len(header))


class FakeWorld:
    """In-memory world: assigns agent ids and broadcasts chat to every spawned bridge."""

    def __init__(self):
        self.bridges: list["FakeWorldBridge"] = []
        self.actions: list[tuple[str, Command]] = []
        self.spawned: list[tuple[str, str | None]] = []
        self.fail_connects = 0
        self.reject_spawn = False
        self._ids = itertools.count(1)
        self._message_ids = itertools.count(1)

    def new_bridge(self) -> "FakeWorldBridge":
        return FakeWorldBridge(self)

    def bridge_for(self, agent_id: str) -> "FakeWorldBridge":
        return next(b for b in self.bridges if b.agent_id == agent_id)

    async def broadcast_chat(self, sender: "FakeWorldBridge", text: str, message_id: str | None = None) -> None:
        data = {
            "id": message_id or f"m{next(self._message_ids)}",
            "from": sender.name,
            "fromId": sender.agent_id,
            "body": text,
            "createdAt": "2024-01-01T00:00:00.000Z",
        }
        for bridge in list(self.bridges):
            await bridge._emit(WorldEvent("chat", dict(data)))

    async def kick(self, agent_id: str, code: str = "KICKED") -> None:
        await self.bridge_for(agent_id)._emit(WorldEvent("kick", {"code": code}))

    async def drop(self, agent_id: str) -> None:
        """Simulate the world closing one agent's connection."""
        bridge = self.bridge_for(agent_id)
        bridge.connected = False
        self.bridges.remove(bridge)
        await bridge._emit(WorldEvent("disconnect", {"reason": "dropped"}))


class FakeWorldBridge(WorldBridge):
    def __init__(self, world: FakeWorld):
        super().__init__()
        self.world = world
        self.connected = False
        self.agent_id: str | None = None
        self.name: str | None = None
        self.disconnect_calls = 0

    @property
    def is_connected(self) -> bool:
        return self.connected

    async def connect(self) -> None:
        if self.world.fail_connects > 0:
            self.world.fail_connects -= 1
            raise WorldBridgeError("connection refused", transient=True)
        self.connected = True

    async def spawn(self, name: str, avatar_url: str | None) -> str:
        if self.world.reject_spawn:
            raise WorldBridgeError("world is full")
        self.name = name
        self.agent_id = f"w{next(self.world._ids)}"
        self.world.spawned.append((name, avatar_url))
        self.world.bridges.append(self)
        return self.agent_id

    async def send_action(self, command: Command) -> Ack:
        if not self.connected:
            raise WorldBridgeError("not connected", transient=True)
        self.world.actions.append((self.agent_id, command))
        if isinstance(command, Speak):
            await self.world.broadcast_chat(self, command.text)
            return Ack("speak", {"text": command.text})
        if isinstance(command, Move):
            return Ack("move", {"direction": command.direction, "duration": command.duration_ms})
        if isinstance(command, Face):
            if command.yaw is not None:
                return Ack("face", {"yaw": command.yaw})
            return Ack("face", {"direction": command.direction or "auto"})
        raise WorldBridgeError(f"unsupported {command.verb}")

    async def disconnect(self) -> None:
        self.disconnect_calls += 1
        self.connected = False
        if self in self.world.bridges:
            self.world.bridges.remove(self)


FAST_RETRY = RetryConfig(initial_delay_ms=1, max_delay_ms=5, multiplier=2.0, max_attempts=3)


@pytest.fixture
def config():
    """Defaults with near-instant retries."""
    return Config(
        world=WorldConfig(retry=FAST_RETRY),
        avatars=AvatarConfig(retry=FAST_RETRY),
        sessions=SessionsConfig(),
    )


@pytest.fixture
def fake_world():
    return FakeWorld()


@pytest.fixture
def asset_requests():
    """Requests seen by the mocked avatar hosts."""
    return []


@pytest.fixture
def avatar_proxy(config, asset_requests):
    """AvatarProxy whose HTTP traffic goes to an in-memory transport."""

    def handler(request: httpx.Request) -> httpx.Response:
        asset_requests.append(request)
        if request.url.path == "/api/avatar/upload":
            return httpx.Response(200, json={"url": "http://localhost:4000/assets/uploaded.vrm", "hash": "abc123"})
        return httpx.Response(200, content=make_vrm())

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return AvatarProxy(config.avatars, config.world.api_url, client=client)


@pytest.fixture
def gateway(config, fake_world, avatar_proxy):
    return GatewayService(config, bridge_factory=fake_world.new_bridge, avatars=avatar_proxy)


@pytest.fixture
def vrm():
    """Factory for GLB-shaped payloads: vrm(size=64, version=2, magic=...)."""
    return make_vrm
