"""
WebSocket 渠道实现 - 全双工、实时推送的 Agent 协议。

本模块实现了面向长连接客户端的协议：
- 入站：每条 WebSocket 文本消息是一个 JSON 命令，如 {"type": "speak", "text": "hi"}
- 出站：确认事件、聊天事件、警告、错误等 JSON 事件

连接状态机：
  等待 spawn ──spawn──→ 活跃 ──kicked / disconnected / despawn──→ 关闭
  - 每个连接只接受一次 spawn，再次 spawn 返回 ALREADY_SPAWNED
  - spawn 之前只允许 who / ping / list_avatars，其他命令返回 SPAWN_REQUIRED
  - 终止事件（kicked / disconnected）发送后立即关闭连接
  - 客户端断开连接时自动 despawn

架构特点：
- 每个连接一个读任务 + 一个写任务，所有出站事件经同一个发送队列，
  确认事件与推送事件的顺序与产生顺序一致
- 会话的 outbox 订阅回调只做 put_nowait，不会阻塞世界事件的分发
"""

import asyncio
import json
from typing import Any

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from loguru import logger

from agentgate.bus.events import AgentEvent
from agentgate.channels.base import BaseChannel
from agentgate.errors import ErrorCode, GatewayError
from agentgate.session.manager import Session

# spawn 之前允许的命令（只查询，不需要会话）
PRE_SPAWN_VERBS = frozenset({"who", "ping", "list_avatars"})


class SocketConnection:
    """
    单个 WebSocket 连接的状态与发送队列。

    属性:
        ws: FastAPI WebSocket 对象
        session: spawn 成功后绑定的会话
        queue: 待发送事件队列（None 表示停止写循环）
    """

    def __init__(self, ws: WebSocket):
        self.ws = ws
        self.session: Session | None = None
        self.queue: asyncio.Queue[AgentEvent | None] = asyncio.Queue()

    def push(self, event: AgentEvent) -> None:
        """非阻塞入队（同时用作会话 outbox 的订阅回调）。"""
        self.queue.put_nowait(event)

    def attach(self, session: Session) -> None:
        """绑定会话并订阅其 outbox；spawn 期间缓冲的事件一并转入发送队列。"""
        self.session = session
        session.outbox.subscribe(self.push)
        for event in session.outbox.drain_since(0):
            self.push(event)

    def detach(self) -> None:
        if self.session is not None:
            self.session.outbox.unsubscribe(self.push)

    async def write_loop(self) -> None:
        """按顺序发送事件；发送终止事件后关闭连接并退出。"""
        while True:
            event = await self.queue.get()
            if event is None:
                break
            try:
                await self.ws.send_json(event.to_dict())
            except (WebSocketDisconnect, RuntimeError) as e:
                logger.debug(f"Socket send failed: {e}")
                break
            if event.is_terminal:
                await self.close()
                break

    async def close(self) -> None:
        try:
            await self.ws.close()
        except RuntimeError:
            pass  # 已关闭


class SocketChannel(BaseChannel):
    """WebSocket 协议适配器。"""

    name = "socket"

    def __init__(self, config, gateway):
        super().__init__(config, gateway)
        self._connections: set[SocketConnection] = set()

    def register(self, app: FastAPI) -> None:
        app.add_api_websocket_route(self.config.channels.socket.path, self.handle_connection)

    async def stop(self) -> None:
        self._running = False
        for conn in list(self._connections):
            conn.push(None)
            await conn.close()

    async def handle_connection(self, websocket: WebSocket) -> None:
        """一个连接的完整生命周期：读写并发，任一方结束即清理。"""
        await websocket.accept()
        conn = SocketConnection(websocket)
        self._connections.add(conn)

        reader = asyncio.create_task(self._read_loop(conn))
        writer = asyncio.create_task(conn.write_loop())
        try:
            await asyncio.wait({reader, writer}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            reader.cancel()
            writer.cancel()
            self._connections.discard(conn)
            conn.detach()
            session = conn.session
            if session is not None and session.is_live:
                logger.info(f"Socket closed for {session.display_name}, despawning")
                await self.gateway.despawn(session.token)

    async def _read_loop(self, conn: SocketConnection) -> None:
        while True:
            try:
                raw = await conn.ws.receive_text()
            except (WebSocketDisconnect, RuntimeError):
                return

            try:
                msg = json.loads(raw)
            except json.JSONDecodeError:
                self._send_error(conn, GatewayError(ErrorCode.INVALID_JSON, "Message must be valid JSON"))
                continue

            try:
                await self._dispatch(conn, msg)
            except GatewayError as e:
                self._send_error(conn, e)
            except Exception as e:
                logger.error(f"Error handling socket message: {e}")
                self._send_error(conn, GatewayError(ErrorCode.INTERNAL_ERROR, "Internal error"))

    @staticmethod
    def _send_error(conn: SocketConnection, error: GatewayError) -> None:
        conn.push(AgentEvent("error", error.to_dict()))

    async def _dispatch(self, conn: SocketConnection, msg: Any) -> None:
        if not isinstance(msg, dict):
            raise GatewayError(ErrorCode.INVALID_JSON, "Message must be a JSON object")
        verb = msg.get("type")
        if not verb or not isinstance(verb, str):
            raise GatewayError(ErrorCode.MISSING_ARGUMENT, "Command requires a string 'type' field")

        if verb == "spawn":
            await self._spawn(conn, msg)
            return

        canonical = self.gateway.interpreter.canonical_verb(verb)
        if canonical is None:
            raise GatewayError(ErrorCode.UNKNOWN_COMMAND, f"Unknown command: {verb}")

        session = conn.session
        if session is None:
            if canonical not in PRE_SPAWN_VERBS:
                raise GatewayError(ErrorCode.SPAWN_REQUIRED, "Send a spawn message first")
            conn.push(self._pre_spawn_result(canonical))
            return

        command = self.gateway.interpreter.from_message(msg)
        result = await self.gateway.execute(session, command)
        if result.warning:
            conn.push(AgentEvent("warning", {"message": result.warning}))
        # despawn 的终止事件已经通过 outbox 推送
        if result.action != "despawn":
            conn.push(result.to_event())

    def _pre_spawn_result(self, canonical: str) -> AgentEvent:
        if canonical == "who":
            return AgentEvent("who", {"agents": self.gateway.who()})
        if canonical == "list_avatars":
            return AgentEvent("avatar_library", {"avatars": self.gateway.avatars.library.to_list()})
        return AgentEvent("pong")

    async def _spawn(self, conn: SocketConnection, msg: dict[str, Any]) -> None:
        if conn.session is not None:
            raise GatewayError(ErrorCode.ALREADY_SPAWNED, "Agent already spawned on this connection")

        session = await self.gateway.spawn(msg.get("name"), msg.get("avatar"), "socket")
        conn.push(AgentEvent("spawned", session.to_dict()))
        conn.attach(session)
