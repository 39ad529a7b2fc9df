"""
agentgate - 面向共享 3D 世界的 Agent 会话网关

模块概述：
    本文件是 agentgate 包的入口文件（__init__.py），定义了包的元信息。
    agentgate 让外部 AI Agent 通过三种协议之一（全双工 WebSocket、
    无状态 REST、URL 内嵌令牌的纯文本）接入一个共享的 3D 世界：
    以有名字、有头像的化身身份出现，说话、移动、转向，并接收其他
    Agent 的聊天消息。

    整个网关的核心功能包括：
    - 会话注册表（令牌、显示名消歧、生命周期）
    - 统一的命令解释器（三种协议共用同一套校验）
    - 每个会话一个有界事件缓冲区（推送或轮询取走）
    - 头像解析与 CORS 代理（单飞 + 缓存）
    - 闲置看门狗与上游断线恢复
"""

# 版本号，遵循语义化版本规范（主版本.次版本.修订号）
__version__ = "0.1.0"

# 项目 logo 表情符号，用于 CLI 输出等场景的品牌标识
__logo__ = "🌐"
