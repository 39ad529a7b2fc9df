"""
网关核心服务 (gateway/service.py)

模块职责：
    GatewayService 是三种协议适配器共用的"业务层"，负责：
    1. spawn：登记会话 → 建立世界连接 → 在世界中生成化身（暂时性错误按退避重试）
    2. execute：在会话锁内执行一条规范命令，返回协议无关的 CommandResult
    3. 世界事件处理：聊天过滤自身发言、解析发送者显示名、按消息 ID 去重；
       被踢出 / 连接断开时更新状态并投递终止事件
    4. 上游恢复：活跃会话的世界连接意外断开时，按退避策略重连并重新生成；
       重试耗尽则投递 disconnected{reason: "UPSTREAM_LOST"} 并终止会话
    5. 闲置过期、主动 despawn、进程退出时的统一清理

数据流：
    适配器 → CommandInterpreter → GatewayService.execute → WorldBridge.send_action
    WorldBridge 事件 → GatewayService._on_world_event → Session.outbox → 适配器

终止路径（despawn / kick / 上游断开 / 闲置过期）都归结为 registry.remove()，
它是幂等的：先到者生效，后到者看到"已终止"直接返回。

设计模式对比（Java 视角）：
    相当于 Spring 的 @Service 门面，适配器是 @Controller，
    SessionRegistry 是 Repository，WorldBridge 是外部系统的 Client。
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable

from loguru import logger

from agentgate.avatar.proxy import AvatarProxy
from agentgate.bus.events import AgentEvent, WorldEvent
from agentgate.commands.interpreter import CommandInterpreter
from agentgate.commands.types import (
    Command,
    Despawn,
    ListAvatars,
    Ping,
    Speak,
    UploadAvatar,
    Who,
)
from agentgate.config.schema import Config
from agentgate.errors import ErrorCode, GatewayError
from agentgate.session.manager import Session, SessionRegistry, TransportKind
from agentgate.session.watchdog import InactivityWatchdog
from agentgate.utils.backoff import BackoffPolicy
from agentgate.world.bridge import WebSocketWorldBridge, WorldBridge, WorldBridgeError

BridgeFactory = Callable[[], WorldBridge]


@dataclass
class CommandResult:
    """
    一条命令的执行结果（与协议无关）。

    属性:
        action: 结果类型，socket 适配器直接用作确认事件的 type
                （speak / move / face / who / pong / avatar_library / avatar_uploaded / despawn）
        data: 结果数据
        warning: 非致命警告（命令仍然执行成功）
    """

    action: str
    data: dict[str, Any] = field(default_factory=dict)
    warning: str | None = None

    def to_event(self) -> AgentEvent:
        return AgentEvent(self.action, dict(self.data))


def _is_transient(e: Exception) -> bool:
    return isinstance(e, WorldBridgeError) and e.transient


class GatewayService:
    """
    网关核心服务。

    参数:
        config: 根配置
        bridge_factory: 为每个会话创建世界连接的工厂（默认 WebSocketWorldBridge）
        avatars: 头像代理（默认按配置创建）
    """

    def __init__(
        self,
        config: Config,
        bridge_factory: BridgeFactory | None = None,
        avatars: AvatarProxy | None = None,
    ):
        self.config = config
        self.interpreter = CommandInterpreter(config.limits, config.avatars.max_upload_bytes)
        self.avatars = avatars or AvatarProxy(config.avatars, config.world.api_url)
        self.registry = SessionRegistry(self.avatars, config.limits, config.sessions.retired_ttl_s)
        self.bridge_factory = bridge_factory or (lambda: WebSocketWorldBridge(config.world))
        self.world_backoff = BackoffPolicy.from_config(config.world.retry)
        self.watchdog = InactivityWatchdog(
            self.registry,
            self.expire,
            timeout_s=config.sessions.inactivity_timeout_s,
            interval_s=config.sessions.sweep_interval_s,
        )
        self._recoveries: dict[str, asyncio.Task] = {}

    # ---- 生命周期 ----------------------------------------------------------------

    async def start(self) -> None:
        await self.watchdog.start()

    async def shutdown(self) -> None:
        """停止看门狗，取消恢复任务，移除全部会话，关闭头像代理的 HTTP 客户端。"""
        self.watchdog.stop()
        for task in list(self._recoveries.values()):
            task.cancel()
        self._recoveries.clear()
        count = len(self.registry)
        await self.registry.shutdown()
        await self.avatars.close()
        logger.info(f"Gateway shut down ({count} sessions released)")

    # ---- spawn / despawn --------------------------------------------------------

    async def spawn(self, name: Any, avatar: Any, transport: TransportKind) -> Session:
        """
        创建会话并在世界中生成化身。

        异常:
            GatewayError(INVALID_PARAMS): 名字或头像参数不合法
            GatewayError(SPAWN_FAILED): 世界连接或生成失败（重试耗尽）
        """
        world = self.bridge_factory()
        session = await self.registry.create(name, avatar, transport, world)
        world.on_event(lambda event: self._on_world_event(session, event))

        try:
            session.world_agent_id = await self._connect_and_spawn(session)
        except asyncio.CancelledError:
            await self.registry.remove(session.token, retire=False)
            raise
        except Exception as e:
            await self.registry.remove(session.token, retire=False)
            logger.warning(f"Spawn failed for {session.display_name}: {e}")
            raise GatewayError(ErrorCode.SPAWN_FAILED, f"Failed to spawn in world: {e}") from e

        if not session.is_live:
            raise GatewayError(ErrorCode.SPAWN_FAILED, "Session ended before spawn completed")

        session.status = "active"
        session.touch()
        logger.info(
            f"Agent spawned: {session.display_name} ({session.public_id}) via {transport}, "
            f"world id {session.world_agent_id}"
        )
        return session

    async def _connect_and_spawn(self, session: Session) -> str:
        async def attempt() -> str:
            await session.world.connect()
            try:
                # 世界侧使用原始名字；显示名消歧只在网关内部生效
                return await session.world.spawn(session.base_name, session.avatar_url)
            except Exception:
                await session.world.disconnect()
                raise

        return await self.world_backoff.run(
            attempt,
            is_transient=_is_transient,
            should_continue=lambda: session.is_live,
            label=f"World spawn for {session.display_name}",
        )

    async def despawn(self, token: str) -> bool:
        """
        主动下线（幂等）。

        返回:
            True 表示本次调用终止了会话；会话已终止时返回 False
        """
        session = self.registry.get(token)
        if session is None:
            return False
        session.outbox.publish(AgentEvent("disconnected", {"reason": "DESPAWNED"}))
        await self.registry.remove(token)
        logger.info(f"Agent despawned: {session.display_name} ({session.public_id})")
        return True

    async def expire(self, session: Session) -> None:
        """闲置过期回调（看门狗调用）。投递不阻塞，失败也不影响移除。"""
        if not session.is_live:
            return
        session.status = "disconnected"
        session.outbox.publish(AgentEvent("disconnected", {"reason": "INACTIVITY_TIMEOUT"}))
        await self.registry.remove(session.token)

    # ---- 令牌解析与轮询 ------------------------------------------------------------

    def resolve_token(self, token: str | None) -> Session:
        """
        按令牌查找会话（存活或保留期内的已终止会话）。

        异常:
            GatewayError(UNAUTHORIZED): 令牌缺失或未知
        """
        if not token:
            raise GatewayError(ErrorCode.UNAUTHORIZED, "Missing session token")
        session = self.registry.get(token) or self.registry.get_retired(token)
        if session is None:
            raise GatewayError(ErrorCode.UNAUTHORIZED, "Invalid or expired session token")
        return session

    def poll(self, session: Session, since: int = 0) -> list[AgentEvent]:
        """取走会话缓冲区中 since 之后的事件。轮询会重置闲置计时。"""
        if session.is_live:
            session.touch()
        return session.outbox.drain_since(since)

    def who(self) -> list[dict[str, Any]]:
        return self.registry.list_agents()

    # ---- 命令执行 ----------------------------------------------------------------

    async def execute(self, session: Session, command: Command) -> CommandResult:
        """
        在会话锁内执行一条规范命令。同一会话上的命令按到达顺序串行执行。

        异常:
            GatewayError: NOT_CONNECTED（会话已终止或世界连接不可用）、UPLOAD_FAILED 等
        """
        async with session.lock:
            if isinstance(command, Despawn):
                await self.despawn(session.token)
                return CommandResult("despawn", {"status": "despawned"})

            if not session.is_live:
                raise GatewayError(ErrorCode.NOT_CONNECTED, f"Agent is not connected (status: {session.status})")
            session.touch()

            if isinstance(command, Who):
                return CommandResult("who", {"agents": self.registry.list_agents()})
            if isinstance(command, Ping):
                return CommandResult("pong")
            if isinstance(command, ListAvatars):
                return CommandResult("avatar_library", {"avatars": self.avatars.library.to_list()})
            if isinstance(command, UploadAvatar):
                url, file_hash = await self.avatars.upload(command.data, command.filename)
                return CommandResult("avatar_uploaded", {"url": url, "hash": file_hash})

            if not session.is_active:
                raise GatewayError(ErrorCode.NOT_CONNECTED, f"Agent is not connected (status: {session.status})")
            try:
                ack = await session.world.send_action(command)
            except WorldBridgeError as e:
                raise GatewayError(ErrorCode.NOT_CONNECTED, f"World connection unavailable: {e}") from e

            warning = command.warning if isinstance(command, Speak) else None
            return CommandResult(ack.action, ack.data, warning=warning)

    # ---- 世界事件 ----------------------------------------------------------------

    async def _on_world_event(self, session: Session, event: WorldEvent) -> None:
        if event.kind == "chat":
            self._deliver_chat(session, event.data)
        elif event.kind == "kick":
            await self._handle_kick(session, event.data.get("code"))
        elif event.kind == "disconnect":
            self._handle_upstream_loss(session)

    def _deliver_chat(self, session: Session, data: dict[str, Any]) -> None:
        from_id = data.get("fromId")
        # 不把会话自己的发言回显给自己
        if from_id is not None and from_id == session.world_agent_id:
            return

        sender = self.registry.by_world_agent_id(from_id)
        message_id = data.get("id")
        session.outbox.publish(AgentEvent(
            "chat",
            {
                "from": sender.display_name if sender else data.get("from"),
                "fromId": from_id,
                "body": data.get("body"),
                "id": message_id,
                "createdAt": data.get("createdAt"),
            },
            dedupe_id=str(message_id) if message_id is not None else None,
        ))

    async def _handle_kick(self, session: Session, code: Any) -> None:
        if not session.is_live:
            return
        logger.info(f"Agent {session.display_name} ({session.public_id}) kicked: {code}")
        session.status = "kicked"
        session.outbox.publish(AgentEvent("kicked", {"code": code}))
        await self.registry.remove(session.token)

    def _handle_upstream_loss(self, session: Session) -> None:
        if not session.is_active or session.token in self._recoveries:
            return
        logger.warning(f"World connection lost for {session.display_name}, attempting recovery")
        session.status = "connecting"
        task = asyncio.create_task(self._recover(session))
        self._recoveries[session.token] = task
        task.add_done_callback(lambda _: self._recoveries.pop(session.token, None))

    async def _recover(self, session: Session) -> None:
        """重连并重新生成化身。会话在此期间被移除时放弃。"""
        try:
            world_agent_id = await self._connect_and_spawn(session)
        except Exception as e:
            if session.token not in self.registry:
                return
            logger.warning(f"Could not restore world connection for {session.display_name}: {e}")
            session.status = "disconnected"
            session.outbox.publish(AgentEvent("disconnected", {"reason": "UPSTREAM_LOST"}))
            await self.registry.remove(session.token)
            return

        if session.token not in self.registry:
            await session.world.disconnect()
            return
        session.world_agent_id = world_agent_id
        session.status = "active"
        session.outbox.publish(AgentEvent("warning", {"message": "World connection was lost and has been restored"}))
        logger.info(f"World connection restored for {session.display_name}")
