"""
事件缓冲模块 - 轮询类客户端的"取走即消费"事件队列。

HTTP / 纯文本协议是无状态的，世界事件到达时客户端不一定在线，
因此每个会话都有一个有界 FIFO 缓冲区暂存事件，客户端轮询时一次性取走：

  push(event)          分配单调时间戳 → 去重 → 入队 → 超容量时淘汰最旧事件
  drain_since(cutoff)  取出时间戳严格大于 cutoff 的事件，并从缓冲区中删除

不变式：
- 同一事件不会被同一轮询方取走两次（取走即删除）
- 轮询间隔短于缓冲区保留时长时，事件不会丢失
- 超容量淘汰最旧事件是约定行为，不是错误

【Java 开发者类比】
- EventBuffer 类似于一个带容量上限的 ArrayDeque + 按时间戳过滤的 drainTo()
"""

from collections import deque

from loguru import logger

from agentgate.bus.events import AgentEvent
from agentgate.utils.helpers import MonotonicClock


class EventBuffer:
    """
    有界事件缓冲区（每个会话一个）。

    属性:
        max_size: 容量上限，默认 500
        clock: 单调毫秒时钟，为入队事件分配时间戳
    """

    def __init__(self, max_size: int = 500, clock: MonotonicClock | None = None):
        self.max_size = max_size
        self.clock = clock or MonotonicClock()
        self._events: deque[AgentEvent] = deque()

    def contains(self, dedupe_id: str) -> bool:
        """缓冲区中是否已有该去重 ID 的事件。"""
        return any(e.dedupe_id == dedupe_id for e in self._events)

    def push(self, event: AgentEvent) -> AgentEvent | None:
        """
        将事件加入缓冲区。

        参数:
            event: 待入队的事件（sequence 会被覆盖为新的单调时间戳）

        返回:
            入队后的事件；因去重被跳过时返回 None
        """
        if event.dedupe_id and self.contains(event.dedupe_id):
            logger.debug(f"Skipping duplicate event {event.dedupe_id}")
            return None

        event.sequence = self.clock.next()
        self._events.append(event)

        # 超容量时淘汰最旧的事件
        while len(self._events) > self.max_size:
            dropped = self._events.popleft()
            logger.debug(f"Event buffer full, dropped oldest {dropped.kind} event")
        return event

    def drain_since(self, cutoff: int = 0) -> list[AgentEvent]:
        """
        取出并删除时间戳严格大于 cutoff 的全部事件（按时间戳顺序）。

        不匹配的事件保留在缓冲区中，供以后更小 cutoff 的 drain 取走。
        整个过程没有 await，在 asyncio 中是原子的。

        参数:
            cutoff: 毫秒时间戳，0 表示取走整个缓冲区
        """
        matching = [e for e in self._events if e.sequence > cutoff]
        if matching:
            self._events = deque(e for e in self._events if e.sequence <= cutoff)
        return matching

    def clear(self) -> None:
        self._events.clear()

    def __len__(self) -> int:
        return len(self._events)
