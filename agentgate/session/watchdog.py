"""
闲置看门狗 - 定期回收长时间没有活动的会话。

本模块实现了周期性巡检机制：
- 每隔 interval_s 秒扫描一次所有存活会话
- 距离上次活动（命令或轮询）超过 timeout_s 的会话被判定为过期
- 过期处理委托给 on_expire 回调（通常是 GatewayService.expire）：
  推送 disconnected{reason: "INACTIVITY_TIMEOUT"} 并移除会话
- 顺带清理超过保留期的墓碑

架构设计：
- 基于 asyncio.Task 的定期循环（与 start/stop 生命周期配套）
- 单个会话过期处理失败只记录日志，不影响其他会话和后续巡检
- sweep() 可以直接调用并传入 now，方便测试
"""

import asyncio
import time
from typing import Any, Callable, Coroutine

from loguru import logger

from agentgate.session.manager import Session, SessionRegistry


class InactivityWatchdog:
    """
    闲置看门狗。

    参数:
        registry: 会话注册表
        on_expire: 会话过期回调
        timeout_s: 闲置超时（秒），默认 300
        interval_s: 巡检间隔（秒），默认 15
    """

    def __init__(
        self,
        registry: SessionRegistry,
        on_expire: Callable[[Session], Coroutine[Any, Any, None]],
        timeout_s: float = 300,
        interval_s: float = 15,
        now: Callable[[], float] = time.monotonic,
    ):
        self.registry = registry
        self.on_expire = on_expire
        self.timeout_s = timeout_s
        self.interval_s = interval_s
        self._now = now
        self._running = False
        self._task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"Inactivity watchdog started (timeout {self.timeout_s}s, sweep every {self.interval_s}s)")

    def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            self._task = None

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.interval_s)
                if self._running:
                    await self.sweep()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Watchdog error: {e}")

    async def sweep(self, now: float | None = None) -> list[Session]:
        """
        执行一次巡检。

        返回:
            本次被判定为过期的会话列表
        """
        now = self._now() if now is None else now
        expired = [
            s for s in self.registry.live_sessions()
            if now - s.last_activity_at >= self.timeout_s
        ]
        for session in expired:
            logger.info(f"Session {session.display_name} ({session.public_id}) inactive for {self.timeout_s}s, expiring")
            try:
                await self.on_expire(session)
            except Exception as e:
                logger.error(f"Failed to expire session {session.public_id}: {e}")

        self.registry.purge_retired(now)
        return expired
