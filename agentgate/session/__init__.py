"""
会话管理模块 - Agent 会话的注册、查找和生命周期回收。

【架构定位】
会话注册表位于协议适配器和世界连接之间：
- 适配器凭令牌从注册表定位会话
- 每个会话独占一条世界连接和一个出站事件通道
- 闲置看门狗定期回收长时间没有活动的会话

【Java 开发者类比】
- SessionRegistry 类似于 Spring Session 的 SessionRepository（纯内存）
- InactivityWatchdog 类似于 @Scheduled 定时任务
"""

from agentgate.session.manager import Session, SessionRegistry
from agentgate.session.watchdog import InactivityWatchdog

__all__ = ["InactivityWatchdog", "Session", "SessionRegistry"]
