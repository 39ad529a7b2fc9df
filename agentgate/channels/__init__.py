"""
协议适配器模块 - 网关对外提供的三种协议。

- socket：全双工 WebSocket，事件实时推送
- http：无状态 REST，Bearer 令牌鉴权
- plaintext：URL 内嵌令牌，逐行纯文本命令

所有渠道共用同一个 GatewayService，只负责协议格式的转换。
"""

from agentgate.channels.base import BaseChannel
from agentgate.channels.manager import ChannelManager

__all__ = ["BaseChannel", "ChannelManager"]
