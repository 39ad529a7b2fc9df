"""世界连接模块 - 每个会话到上游世界服务的独占连接。"""

from agentgate.world.bridge import Ack, WebSocketWorldBridge, WorldBridge, WorldBridgeError

__all__ = ["Ack", "WebSocketWorldBridge", "WorldBridge", "WorldBridgeError"]
