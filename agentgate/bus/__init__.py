"""
事件总线模块 - 实现世界连接与协议适配器之间的解耦通信。

本模块是 agentgate 的"中枢神经系统"，负责"世界 → 客户端"方向的事件流转：

事件流向：
  世界连接 → WorldEvent → GatewayService → AgentEvent → EventChannel
    ├─ 有订阅者（socket）：立即推送
    └─ 无订阅者（HTTP/纯文本）：进入 EventBuffer，等待轮询取走

【Java 开发者类比】
- EventChannel 类似于 Spring 的 ApplicationEventPublisher
- AgentEvent / WorldEvent 类似于出站 / 入站 DTO
- EventBuffer 类似于带容量上限的 BlockingQueue
"""

from agentgate.bus.buffer import EventBuffer
from agentgate.bus.events import AgentEvent, WorldEvent
from agentgate.bus.queue import EventChannel

__all__ = ["AgentEvent", "EventBuffer", "EventChannel", "WorldEvent"]
