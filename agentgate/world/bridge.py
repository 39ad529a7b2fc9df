"""
世界连接模块 (world/bridge.py)

模块职责：
    每个会话独占一条到上游世界服务的连接（World Bridge）。网关只负责
    "会话 ↔ 连接"的映射以及规范命令/事件的双向转发，不关心世界里的
    物理、渲染和实体表示。

架构：
    WorldBridge（抽象基类）定义网关依赖的最小接口：
        connect() / spawn() / send_action() / on_event() / disconnect()
    WebSocketWorldBridge 是基于 websockets 的默认实现；
    测试中用内存版本替换（见 tests/conftest.py）。

上游协议（JSON over WebSocket）：
    出站：
        {"type": "spawn", "name": ..., "avatar": ...}   → 等待 {"type": "spawned", "id": ...}
        {"type": "chat", "message": text}
        {"type": "input", "key": "keyW", "state": true|false}
        {"type": "look", "yaw": number|null}
    入站：
        {"type": "chat", "message": {...}}  → WorldEvent("chat")
        {"type": "kick", "code": ...}       → WorldEvent("kick")
        连接被对端关闭                        → WorldEvent("disconnect")

二开提示：
    接入其他世界引擎时只需实现 WorldBridge 的五个方法，并在
    GatewayService 中传入对应的 bridge_factory。
"""

import asyncio
import json
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

import websockets
from loguru import logger
from websockets.exceptions import ConnectionClosed, WebSocketException

from agentgate.bus.events import WorldEvent
from agentgate.commands.types import Command, Face, Move, Speak
from agentgate.config.schema import WorldConfig
from agentgate.utils.helpers import truncate_string

EventCallback = Callable[[WorldEvent], Awaitable[None]]

# 移动方向 → 模拟按键
DIRECTION_KEYS = {
    "forward": "keyW",
    "backward": "keyS",
    "left": "keyA",
    "right": "keyD",
    "jump": "space",
}

# 朝向方向 → 偏航角（弧度）
DIRECTION_YAWS = {
    "forward": 0.0,
    "backward": math.pi,
    "left": math.pi / 2,
    "right": -math.pi / 2,
}


class WorldBridgeError(Exception):
    """
    世界连接错误。

    属性:
        transient: 是否为暂时性错误（连接失败、超时等），只有暂时性错误会被重试
    """

    def __init__(self, message: str, transient: bool = False):
        super().__init__(message)
        self.transient = transient


@dataclass
class Ack:
    """世界对一条命令的确认（action 为命令动词，data 为回显给客户端的字段）。"""

    action: str
    data: dict[str, Any] = field(default_factory=dict)


class WorldBridge(ABC):
    """
    世界连接抽象基类。

    实现类负责：
    - 建立/关闭上游连接
    - 在世界中生成化身并返回世界侧 ID
    - 把规范命令翻译为上游协议
    - 通过 _emit() 把上游事件交给已注册的回调
    """

    def __init__(self):
        self._callbacks: list[EventCallback] = []

    def on_event(self, callback: EventCallback) -> None:
        """注册世界事件回调（异步函数）。"""
        self._callbacks.append(callback)

    async def _emit(self, event: WorldEvent) -> None:
        for callback in list(self._callbacks):
            try:
                await callback(event)
            except Exception as e:
                logger.error(f"Error dispatching world {event.kind} event: {e}")

    @abstractmethod
    async def connect(self) -> None:
        """建立上游连接。失败时抛出 WorldBridgeError。"""
        pass

    @abstractmethod
    async def spawn(self, name: str, avatar_url: str | None) -> str:
        """在世界中生成化身，返回世界侧 Agent ID。"""
        pass

    @abstractmethod
    async def send_action(self, command: Command) -> Ack:
        """转发一条世界相关的命令（speak / move / face）。"""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """主动关闭连接。必须幂等，且不会触发 disconnect 事件。"""
        pass

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        pass


class WebSocketWorldBridge(WorldBridge):
    """
    基于 websockets 的世界连接实现。

    每个实例对应一个会话的一条 WebSocket 连接。move 命令按下按键后
    由后台任务在 duration 到期时松开按键。
    """

    def __init__(self, config: WorldConfig):
        super().__init__()
        self.config = config
        self._ws = None
        self._reader: asyncio.Task | None = None
        self._spawn_waiter: asyncio.Future | None = None
        self._move_tasks: set[asyncio.Task] = set()
        self._closing = False

    @property
    def is_connected(self) -> bool:
        return self._ws is not None and not self._closing

    async def connect(self) -> None:
        url = self.config.ws_url
        self._closing = False
        try:
            self._ws = await websockets.connect(url, open_timeout=self.config.connect_timeout_s)
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            raise WorldBridgeError(f"Connection to world failed: {e}", transient=True) from e

        logger.debug(f"Connected to world at {url}")
        self._reader = asyncio.create_task(self._read_loop())

    async def spawn(self, name: str, avatar_url: str | None) -> str:
        self._spawn_waiter = asyncio.get_running_loop().create_future()
        await self._send({"type": "spawn", "name": name, "avatar": avatar_url})
        try:
            world_id = await asyncio.wait_for(self._spawn_waiter, self.config.spawn_timeout_s)
        except asyncio.TimeoutError:
            raise WorldBridgeError("World did not confirm spawn in time", transient=True)
        finally:
            self._spawn_waiter = None
        return world_id

    async def send_action(self, command: Command) -> Ack:
        if isinstance(command, Speak):
            logger.debug(f"Chat -> world: {truncate_string(command.text, 80)}")
            await self._send({"type": "chat", "message": command.text})
            return Ack("speak", {"text": command.text})

        if isinstance(command, Move):
            key = DIRECTION_KEYS[command.direction]
            await self._send({"type": "input", "key": key, "state": True})
            task = asyncio.create_task(self._release_after(key, command.duration_ms))
            self._move_tasks.add(task)
            task.add_done_callback(self._move_tasks.discard)
            return Ack("move", {"direction": command.direction, "duration": command.duration_ms})

        if isinstance(command, Face):
            if command.yaw is not None:
                await self._send({"type": "look", "yaw": command.yaw})
                return Ack("face", {"yaw": command.yaw})
            if command.direction is not None:
                await self._send({"type": "look", "yaw": DIRECTION_YAWS[command.direction]})
                return Ack("face", {"direction": command.direction})
            await self._send({"type": "look", "yaw": None})
            return Ack("face", {"direction": "auto"})

        raise WorldBridgeError(f"Command {command.verb} is not a world action")

    async def disconnect(self) -> None:
        self._closing = True
        for task in list(self._move_tasks):
            task.cancel()
        # 可能在读循环自身的回调中被调用（例如被踢出后移除会话），不能取消自己
        if self._reader and self._reader is not asyncio.current_task():
            self._reader.cancel()
        if self._ws is not None:
            ws, self._ws = self._ws, None
            try:
                await ws.close()
            except Exception as e:
                logger.debug(f"Error closing world connection: {e}")

    async def _send(self, payload: dict[str, Any]) -> None:
        if self._ws is None or self._closing:
            raise WorldBridgeError("Not connected to world", transient=True)
        try:
            await self._ws.send(json.dumps(payload))
        except ConnectionClosed as e:
            raise WorldBridgeError(f"World connection closed: {e}", transient=True) from e

    async def _release_after(self, key: str, duration_ms: int) -> None:
        await asyncio.sleep(duration_ms / 1000)
        try:
            await self._send({"type": "input", "key": key, "state": False})
        except WorldBridgeError as e:
            logger.debug(f"Could not release {key}: {e}")

    async def _read_loop(self) -> None:
        ws = self._ws
        reason = "closed"
        try:
            async for raw in ws:
                await self._handle_message(raw)
        except asyncio.CancelledError:
            raise
        except ConnectionClosed as e:
            reason = str(e)
        except Exception as e:
            reason = str(e)
            logger.error(f"World connection reader failed: {e}")

        if self._spawn_waiter and not self._spawn_waiter.done():
            self._spawn_waiter.set_exception(WorldBridgeError("World connection closed during spawn", transient=True))
        if not self._closing:
            self._ws = None
            await self._emit(WorldEvent("disconnect", {"reason": reason}))

    async def _handle_message(self, raw: str | bytes) -> None:
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.warning(f"Invalid JSON from world: {str(raw)[:100]}")
            return
        if not isinstance(data, dict):
            return

        msg_type = data.get("type")
        if msg_type == "spawned":
            if self._spawn_waiter and not self._spawn_waiter.done():
                self._spawn_waiter.set_result(str(data.get("id", "")))
        elif msg_type == "error":
            if self._spawn_waiter and not self._spawn_waiter.done():
                self._spawn_waiter.set_exception(WorldBridgeError(str(data.get("message", "Spawn rejected"))))
            else:
                logger.warning(f"World reported error: {data.get('message')}")
        elif msg_type == "chat":
            message = data.get("message")
            await self._emit(WorldEvent("chat", message if isinstance(message, dict) else data))
        elif msg_type == "kick":
            await self._emit(WorldEvent("kick", {"code": data.get("code")}))
