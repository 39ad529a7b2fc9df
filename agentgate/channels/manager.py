"""
渠道管理器模块 - 统一管理三种协议适配器的挂载和生命周期。

本模块负责：
1. 根据配置初始化所有已启用的渠道
2. 把各渠道的路由挂载到同一个 FastAPI 应用
3. 统一启动/停止所有渠道（停止时关闭所有 WebSocket 连接）

【Java 开发者类比】
- ChannelManager 相当于 Spring 的 ApplicationContext 中对 @Controller 的集中注册
- _init_channels() 相当于 Spring 容器启动时按 @ConditionalOnProperty 创建 Bean

【二开提示】
添加新协议的步骤：
1. 在 config/schema.py 中添加新渠道的配置类
2. 创建 channels/your_channel.py 继承 BaseChannel，实现 register()
3. 在 _init_channels() 中添加初始化代码块
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import FastAPI
from loguru import logger

from agentgate.channels.base import BaseChannel
from agentgate.config.schema import Config

if TYPE_CHECKING:
    from agentgate.gateway.service import GatewayService


class ChannelManager:
    """
    渠道管理器。

    属性:
        config: 全局配置对象
        gateway: 网关核心服务（所有渠道共享）
        channels: 已初始化的渠道字典 {渠道名: 渠道实例}
    """

    def __init__(self, config: Config, gateway: GatewayService):
        self.config = config
        self.gateway = gateway
        self.channels: dict[str, BaseChannel] = {}

        self._init_channels()

    def _init_channels(self) -> None:
        """根据配置初始化所有已启用的渠道（延迟导入）。"""

        # ===== REST 渠道 =====
        if self.config.channels.http.enabled:
            from agentgate.channels.http import HttpChannel
            self.channels["http"] = HttpChannel(self.config, self.gateway)
            logger.info("HTTP channel enabled")

        # ===== 纯文本渠道 =====
        if self.config.channels.plaintext.enabled:
            from agentgate.channels.plaintext import PlaintextChannel
            self.channels["plaintext"] = PlaintextChannel(self.config, self.gateway)
            logger.info("Plaintext channel enabled")

        # ===== WebSocket 渠道 =====
        if self.config.channels.socket.enabled:
            from agentgate.channels.socket import SocketChannel
            self.channels["socket"] = SocketChannel(self.config, self.gateway)
            logger.info("Socket channel enabled")

    def mount(self, app: FastAPI) -> None:
        """把所有已启用渠道的路由挂载到应用。"""
        for channel in self.channels.values():
            channel.register(app)

    async def start_all(self) -> None:
        if not self.channels:
            logger.warning("No channels enabled")
            return
        for name, channel in self.channels.items():
            try:
                await channel.start()
            except Exception as e:
                logger.error(f"Failed to start channel {name}: {e}")

    async def stop_all(self) -> None:
        """逐个停止渠道，确保每个都尝试清理。"""
        logger.info("Stopping all channels...")
        for name, channel in self.channels.items():
            try:
                await channel.stop()
                logger.info(f"Stopped {name} channel")
            except Exception as e:
                logger.error(f"Error stopping {name}: {e}")

    def get_status(self) -> dict[str, Any]:
        """
        获取所有渠道的运行状态。

        返回:
            渠道状态字典，格式为 {渠道名: {"enabled": bool, "running": bool}}
        """
        return {
            name: {"enabled": True, "running": channel.is_running}
            for name, channel in self.channels.items()
        }

    @property
    def enabled_channels(self) -> list[str]:
        return list(self.channels.keys())
