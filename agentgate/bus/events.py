"""
事件类型定义模块 - 定义事件总线中传输的数据结构。

本模块定义了两个核心数据类：
- WorldEvent：世界事件（从上游世界连接到网关）
- AgentEvent：Agent 事件（从网关到 Agent 客户端）

WorldEvent 是 World Bridge 的原始输出，只有 chat / kick / disconnect 三种；
网关处理后转换为 AgentEvent（规范事件），再交给各协议适配器投递。
所有适配器都只认识 AgentEvent 这一种"货币"，实现了协议与世界的解耦。

【Java 开发者类比】
- 使用 Python 的 @dataclass 装饰器，等价于 Java 的 record 类或 Lombok 的 @Data
- field(default_factory=...) 等价于 Java 中在构造器里 new HashMap<>()
- to_dict() 等价于 Jackson 序列化时的 @JsonAnyGetter 扁平化
"""

from dataclasses import dataclass, field
from typing import Any, Literal

from agentgate.utils.helpers import to_iso

WorldEventKind = Literal["chat", "kick", "disconnect"]

# 终止类事件：socket 适配器发送后立即关闭连接
TERMINAL_KINDS = frozenset({"kicked", "disconnected"})


@dataclass
class WorldEvent:
    """
    世界事件 - 上游世界连接推送给网关的原始事实。

    属性:
        kind: 事件类型（chat 聊天 / kick 被踢出 / disconnect 连接断开）
        data: 世界侧的原始数据（如 chat 的 fromId、body、id、createdAt）
    """

    kind: WorldEventKind
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class AgentEvent:
    """
    Agent 事件 - 要投递给某个会话客户端的规范事件。

    kind 即对外协议中的事件类型，包括：
    chat、speak/move/face/who（确认事件）、pong、warning、avatar_library、
    avatar_uploaded、kicked、disconnected、error 等。

    属性:
        kind: 事件类型
        payload: 事件载荷（会被扁平化到输出字典中）
        dedupe_id: 可选的去重 ID（通常是世界侧的消息 ID）
        sequence: 单调递增的毫秒时间戳，在入缓冲/推送时分配，0 表示尚未分配
    """

    kind: str
    payload: dict[str, Any] = field(default_factory=dict)
    dedupe_id: str | None = None
    sequence: int = 0

    @property
    def timestamp(self) -> str | None:
        """人类可读的时间戳（ISO 8601），可以直接作为下一次轮询的 since 参数。"""
        return to_iso(self.sequence) if self.sequence else None

    @property
    def is_terminal(self) -> bool:
        return self.kind in TERMINAL_KINDS

    def to_dict(self) -> dict[str, Any]:
        """
        序列化为对外协议格式：{"type": kind, **payload, "timestamp": ...}。

        返回:
            可直接 JSON 序列化的字典
        """
        data: dict[str, Any] = {"type": self.kind, **self.payload}
        if self.sequence:
            data["timestamp"] = self.timestamp
        return data
