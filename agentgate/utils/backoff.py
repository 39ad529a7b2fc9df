"""
有界指数退避 (utils/backoff.py)

上游依赖（世界服务连接、外部头像下载）出现暂时性错误时的重试策略：
第 n 次重试前等待 initial_delay * multiplier^(n-1)，封顶 max_delay，
总尝试次数不超过 max_attempts。

只有调用方判定为"暂时性"的错误才会重试；校验类错误（如头像格式错误）立即抛出。
"""

import asyncio
from typing import Awaitable, Callable, TypeVar

from loguru import logger

from agentgate.config.schema import RetryConfig

T = TypeVar("T")


class BackoffPolicy:
    """
    指数退避策略。

    属性:
        initial_delay_ms: 首次重试前的等待（毫秒）
        max_delay_ms: 单次等待上限（毫秒）
        multiplier: 延迟倍数
        max_attempts: 最大尝试次数（含第一次）
    """

    def __init__(
        self,
        initial_delay_ms: int = 500,
        max_delay_ms: int = 10000,
        multiplier: float = 2.0,
        max_attempts: int = 3,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.initial_delay_ms = initial_delay_ms
        self.max_delay_ms = max_delay_ms
        self.multiplier = multiplier
        self.max_attempts = max(1, max_attempts)
        self._sleep = sleep

    @classmethod
    def from_config(cls, config: RetryConfig) -> "BackoffPolicy":
        return cls(
            initial_delay_ms=config.initial_delay_ms,
            max_delay_ms=config.max_delay_ms,
            multiplier=config.multiplier,
            max_attempts=config.max_attempts,
        )

    def delay_for(self, attempt: int) -> float:
        """第 attempt 次失败后、下一次尝试前的等待时间（秒），attempt 从 1 开始。"""
        delay_ms = self.initial_delay_ms * (self.multiplier ** (attempt - 1))
        return min(delay_ms, self.max_delay_ms) / 1000

    async def run(
        self,
        op: Callable[[], Awaitable[T]],
        is_transient: Callable[[Exception], bool],
        should_continue: Callable[[], bool] | None = None,
        label: str = "operation",
    ) -> T:
        """
        执行 op，对暂时性错误按退避策略重试。

        参数:
            op: 无参异步函数
            is_transient: 判断异常是否值得重试
            should_continue: 每次重试前检查，返回 False 时放弃（例如会话已被移除）
            label: 日志中的操作名称

        异常:
            最后一次尝试的异常，或第一个非暂时性异常
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                return await op()
            except Exception as e:
                if not is_transient(e) or attempt >= self.max_attempts:
                    raise
                if should_continue is not None and not should_continue():
                    raise
                delay = self.delay_for(attempt)
                logger.warning(f"{label} failed (attempt {attempt}/{self.max_attempts}): {e}; retrying in {delay:.1f}s")
                await self._sleep(delay)
