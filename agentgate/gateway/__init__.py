"""网关模块 - 核心业务服务与 FastAPI 应用工厂。"""

from agentgate.gateway.app import create_app
from agentgate.gateway.service import CommandResult, GatewayService

__all__ = ["CommandResult", "GatewayService", "create_app"]
