"""
会话出站通道模块 - 每个会话唯一的事件出口。

本模块实现了 EventChannel 类，它是"世界 → 客户端"方向所有事件的必经之路。
不同协议的适配器都是同一个通道的消费者，只是消费方式不同：

推送模式（socket 适配器）：
  GatewayService → publish() → 订阅者回调 → 连接的发送队列 → 客户端

缓冲模式（HTTP / 纯文本适配器）：
  GatewayService → publish() → EventBuffer → drain_since() → 轮询响应

有订阅者时事件直接推送（不进缓冲区），没有订阅者时进入缓冲区等待轮询。
两种模式共用同一个单调时钟，所以同一会话内的事件顺序始终一致。

【Java 开发者类比】
- EventChannel 类似于 Spring 的 ApplicationEventPublisher + 一个兜底的 BlockingQueue
- subscribe() 类似于注册 @EventListener
- publish() 是同步非阻塞的，不会因为某个订阅者慢而卡住发布方（类似异步事件监听）
"""

from collections import deque
from typing import Callable

from loguru import logger

from agentgate.bus.buffer import EventBuffer
from agentgate.bus.events import AgentEvent

Subscriber = Callable[[AgentEvent], None]


class EventChannel:
    """
    会话出站通道 - 推送订阅者与轮询缓冲区的统一抽象。

    属性:
        buffer: 轮询用的事件缓冲区
        _subscribers: 推送订阅者列表（同步回调，必须非阻塞）
        _recent_ids: 最近推送过的去重 ID（推送模式下的去重窗口）
        _closed: 通道是否已关闭（会话终止后不再接受事件）
    """

    RECENT_ID_WINDOW = 500

    def __init__(self, buffer: EventBuffer | None = None):
        self.buffer = buffer or EventBuffer()
        self._subscribers: list[Subscriber] = []
        self._recent_ids: deque[str] = deque(maxlen=self.RECENT_ID_WINDOW)
        self._closed = False

    def subscribe(self, callback: Subscriber) -> None:
        """
        注册推送订阅者。

        订阅后新事件直接推送给回调，不再进入缓冲区。
        回调必须是非阻塞的（例如 asyncio.Queue.put_nowait）。
        """
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    @property
    def has_subscribers(self) -> bool:
        return bool(self._subscribers)

    def publish(self, event: AgentEvent) -> AgentEvent | None:
        """
        发布事件到通道。

        返回:
            实际发布（推送或入缓冲）的事件；被去重跳过或通道已关闭时返回 None
        """
        if self._closed:
            logger.debug(f"Channel closed, dropping {event.kind} event")
            return None

        if not self._subscribers:
            return self.buffer.push(event)

        if event.dedupe_id:
            if event.dedupe_id in self._recent_ids:
                return None
            self._recent_ids.append(event.dedupe_id)

        event.sequence = self.buffer.clock.next()
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception as e:
                # 单个订阅者异常不影响其他订阅者
                logger.error(f"Error pushing {event.kind} event to subscriber: {e}")
        return event

    def drain_since(self, cutoff: int = 0) -> list[AgentEvent]:
        """取走缓冲区中时间戳大于 cutoff 的事件（见 EventBuffer.drain_since）。"""
        return self.buffer.drain_since(cutoff)

    def close(self) -> None:
        """
        关闭通道：解除所有订阅，不再接受新事件。

        缓冲区中已有的事件保留，供退役会话的最后一次轮询取走。
        """
        self._closed = True
        self._subscribers.clear()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        """缓冲区中待轮询的事件数量。"""
        return len(self.buffer)
