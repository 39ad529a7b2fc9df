"""
会话注册表实现模块 - Agent 会话的创建、查找、命名和回收。

本模块包含两个核心类：
- Session：一个 Agent 在世界中的存在（令牌、名字、头像、状态、世界连接、出站通道）
- SessionRegistry：会话注册表，按令牌索引所有存活会话，并维护显示名唯一性

【生命周期】
  create()  → connecting → （GatewayService 完成 spawn）→ active
  remove()  → terminated / kicked / disconnected
  终止是幂等的：世界连接和出站通道只释放一次，显示名立即释放可被复用。

【墓碑（retired）】
会话移除后，令牌 → 会话的映射会保留一段时间（retired_ttl_s），
这样轮询方还能取走 kicked / disconnected 等终止事件，
后续命令得到 NOT_CONNECTED 而不是 UNAUTHORIZED。墓碑由看门狗定期清理。

【Java 开发者类比】
- Session 类似于 Java Servlet 的 HttpSession，但额外持有一条上游连接
- SessionRegistry 类似于一个 ConcurrentHashMap<String, Session> + 名字索引
- 不使用全局单例：注册表作为显式对象传给适配器和看门狗，便于测试
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Literal

from loguru import logger

from agentgate.avatar.proxy import AvatarProxy
from agentgate.bus.buffer import EventBuffer
from agentgate.bus.queue import EventChannel
from agentgate.config.schema import LimitsConfig
from agentgate.errors import ErrorCode, GatewayError
from agentgate.utils.helpers import new_public_id, new_token, random_suffix
from agentgate.world.bridge import WorldBridge

SessionStatus = Literal["connecting", "active", "disconnected", "kicked", "terminated"]
TransportKind = Literal["socket", "http"]


@dataclass(eq=False)
class Session:
    """
    单个 Agent 会话。

    属性:
        token: 会话令牌（不透明的能力凭证，只返回给创建者）
        public_id: 公开 ID（其他 Agent 和 REST 路由可见）
        base_name: 请求时的名字
        display_name: 消歧后的显示名（在存活会话中唯一）
        transport: 创建该会话的协议（socket / http）
        world: 独占的世界连接
        avatar_url: 解析后的头像地址（None 表示使用世界默认头像）
        warning: spawn 时的非致命警告（如头像加载失败）
        status: 会话状态
        world_agent_id: 世界侧分配的 Agent ID（spawn 成功后才有）
        outbox: 出站事件通道（推送订阅 + 轮询缓冲）
        lock: 串行化同一会话上的命令
    """

    token: str
    public_id: str
    base_name: str
    display_name: str
    transport: TransportKind
    world: WorldBridge
    avatar_url: str | None = None
    warning: str | None = None
    status: SessionStatus = "connecting"
    world_agent_id: str | None = None
    outbox: EventChannel = field(default_factory=EventChannel)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    created_at: float = field(default_factory=time.time)
    last_activity_at: float = field(default_factory=time.monotonic)
    _released: bool = field(default=False, repr=False)

    def touch(self) -> None:
        """重置闲置计时（任何被接受的命令或轮询都会调用）。"""
        self.last_activity_at = time.monotonic()

    @property
    def is_live(self) -> bool:
        return self.status in ("connecting", "active")

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    async def release(self) -> None:
        """
        释放会话持有的资源（幂等）。

        关闭出站通道（已缓冲的事件保留给最后一次轮询），断开世界连接。
        """
        if self._released:
            return
        self._released = True
        if self.is_live:
            self.status = "terminated"
        self.outbox.close()
        try:
            await self.world.disconnect()
        except Exception as e:
            logger.warning(f"Error disconnecting world for {self.display_name}: {e}")

    def to_dict(self) -> dict[str, Any]:
        """spawn 响应中的会话信息（不含令牌）。"""
        data: dict[str, Any] = {
            "id": self.public_id,
            "name": self.base_name,
            "displayName": self.display_name,
            "avatar": self.avatar_url,
        }
        if self.warning:
            data["warning"] = self.warning
        return data


class SessionRegistry:
    """
    会话注册表 - 存活会话的唯一事实来源。

    所有修改都是同步完成的（中间没有 await），因此在单线程事件循环中
    名字分配、插入、移除天然是原子的，不需要额外加锁。
    """

    def __init__(
        self,
        avatars: AvatarProxy,
        limits: LimitsConfig | None = None,
        retired_ttl_s: float = 300,
        now: Callable[[], float] = time.monotonic,
    ):
        self.avatars = avatars
        self.limits = limits or LimitsConfig()
        self.retired_ttl_s = retired_ttl_s
        self._now = now
        self._sessions: dict[str, Session] = {}   # token → 存活会话
        self._names: dict[str, str] = {}          # 显示名 → token
        self._retired: dict[str, tuple[Session, float]] = {}  # token → (会话, 移除时间)

    def validate_name(self, name: Any) -> str:
        """
        校验 Agent 名字。

        异常:
            GatewayError(INVALID_PARAMS): 为空、超长或包含尖括号
        """
        if not isinstance(name, str) or not name.strip():
            raise GatewayError(ErrorCode.INVALID_PARAMS, "name is required")
        name = name.strip()
        limit = self.limits.max_name_length
        if len(name) > limit:
            raise GatewayError(ErrorCode.INVALID_PARAMS, f"name must be {limit} characters or fewer")
        if "<" in name or ">" in name:
            raise GatewayError(ErrorCode.INVALID_PARAMS, "name must not contain < or >")
        return name

    def _disambiguate(self, name: str) -> str:
        """名字已被存活会话占用时追加 #xxx 后缀，直到唯一。先到者保留原名。"""
        candidate = name
        while candidate in self._names:
            candidate = f"{name}#{random_suffix()}"
        return candidate

    async def create(self, base_name: Any, avatar_ref: Any, transport: TransportKind, world: WorldBridge) -> Session:
        """
        创建并登记一个新会话（状态为 connecting，尚未在世界中生成）。

        头像解析失败不会阻止创建：会话的 avatar_url 为 None，并附带 warning。

        异常:
            GatewayError(INVALID_PARAMS): 名字或头像参数不合法
        """
        name = self.validate_name(base_name)
        avatar_url, warning = await self.avatars.resolve(avatar_ref)

        # 从这里开始没有 await：名字检查和插入是原子的
        display_name = self._disambiguate(name)
        token = new_token()
        while token in self._sessions or token in self._retired:
            token = new_token()
        session = Session(
            token=token,
            public_id=new_public_id(),
            base_name=name,
            display_name=display_name,
            transport=transport,
            world=world,
            avatar_url=avatar_url,
            warning=warning,
            outbox=EventChannel(EventBuffer(max_size=self.limits.event_buffer_size)),
        )
        self._sessions[token] = session
        self._names[display_name] = token
        logger.debug(f"Registered session {display_name} ({session.public_id}) via {transport}")
        return session

    def get(self, token: str | None) -> Session | None:
        """按令牌查找存活会话。"""
        if not token:
            return None
        return self._sessions.get(token)

    def get_retired(self, token: str | None) -> Session | None:
        """按令牌查找已移除但仍在保留期内的会话。"""
        if not token:
            return None
        entry = self._retired.get(token)
        return entry[0] if entry else None

    def by_world_agent_id(self, world_agent_id: str | None) -> Session | None:
        if not world_agent_id:
            return None
        for session in self._sessions.values():
            if session.world_agent_id == world_agent_id:
                return session
        return None

    async def remove(self, token: str, retire: bool = True) -> Session | None:
        """
        移除会话并释放其资源（幂等，重复调用返回 None）。

        参数:
            token: 会话令牌
            retire: 是否保留墓碑（spawn 失败的会话无需保留）

        返回:
            被移除的会话；会话不存在或已移除时返回 None
        """
        session = self._sessions.pop(token, None)
        if session is None:
            return None
        if self._names.get(session.display_name) == token:
            del self._names[session.display_name]
        if retire:
            self._retired[token] = (session, self._now())

        await session.release()
        logger.info(f"Session ended: {session.display_name} ({session.public_id}), status={session.status}")
        return session

    def list_agents(self) -> list[dict[str, Any]]:
        """who 命令的在线列表。"""
        return [
            {"id": s.public_id, "displayName": s.display_name, "worldAgentId": s.world_agent_id}
            for s in self._sessions.values()
            if s.is_active
        ]

    def live_sessions(self) -> list[Session]:
        return list(self._sessions.values())

    def purge_retired(self, now: float | None = None) -> int:
        """清理超过保留期的墓碑，返回清理数量。"""
        now = self._now() if now is None else now
        expired = [t for t, (_, at) in self._retired.items() if now - at >= self.retired_ttl_s]
        for token in expired:
            del self._retired[token]
        if expired:
            logger.debug(f"Purged {len(expired)} retired sessions")
        return len(expired)

    async def shutdown(self) -> None:
        """移除全部会话（进程退出时调用）。"""
        for token in list(self._sessions):
            await self.remove(token, retire=False)
        self._retired.clear()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, token: str) -> bool:
        return token in self._sessions
