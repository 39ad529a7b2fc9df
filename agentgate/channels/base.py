"""
协议适配器基类模块 - 定义所有对外协议的统一接口。

本模块提供了 BaseChannel 抽象基类。网关同时对外提供三种协议，
每种协议一个渠道实现，全部挂载在同一个 FastAPI 应用上：
- socket：全双工 WebSocket，事件实时推送
- http：无状态 REST，Bearer 令牌鉴权，事件靠轮询
- plaintext：令牌嵌在 URL 中，请求体是逐行的纯文本命令

三种渠道都不包含业务逻辑：输入交给 CommandInterpreter 校验，
执行交给 GatewayService，事件从会话的 outbox 读取。渠道只负责
"协议格式 ↔ 规范命令/事件"的转换。

【核心抽象方法】
- register(app): 把本渠道的路由挂载到 FastAPI 应用

【公共能力】
- read_json(): 带大小上限的 JSON 请求体解析
- session_url(): 生成会话的纯文本协议地址（spawn 响应中的 session 字段）

【Java 开发者类比】
- BaseChannel 相当于 Spring MVC 中一组 @Controller 的公共父类
- register() 相当于 @RequestMapping 的集中注册
"""

import json
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from fastapi import FastAPI, Request

from agentgate.errors import ErrorCode, GatewayError
from agentgate.session.manager import Session

if TYPE_CHECKING:
    from agentgate.config.schema import Config
    from agentgate.gateway.service import GatewayService


class BaseChannel(ABC):
    """
    协议适配器抽象基类。

    属性:
        name: 渠道标识名（"socket" / "http" / "plaintext"）
        config: 根配置
        gateway: 网关核心服务（所有渠道共享）
        _running: 渠道运行状态标志
    """

    name: str = "base"

    def __init__(self, config: "Config", gateway: "GatewayService"):
        self.config = config
        self.gateway = gateway
        self._running = False

    @abstractmethod
    def register(self, app: FastAPI) -> None:
        """把本渠道的路由挂载到 FastAPI 应用。"""
        pass

    async def start(self) -> None:
        self._running = True

    async def stop(self) -> None:
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def read_body(self, request: Request, limit: int | None = None) -> bytes:
        """
        读取请求体，超过上限时拒绝。

        参数:
            limit: 字节上限，默认 limits.max_body_bytes（头像上传路由会放宽）

        异常:
            GatewayError(INVALID_PARAMS): 请求体过大
        """
        limit = limit or self.config.limits.max_body_bytes
        declared = request.headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > limit:
            raise GatewayError(ErrorCode.INVALID_PARAMS, f"Request body exceeds {limit} bytes")
        body = await request.body()
        if len(body) > limit:
            raise GatewayError(ErrorCode.INVALID_PARAMS, f"Request body exceeds {limit} bytes")
        return body

    async def read_json(self, request: Request, limit: int | None = None) -> dict[str, Any]:
        """
        解析 JSON 对象请求体。空请求体视为 {}。

        异常:
            GatewayError(INVALID_JSON): 不是合法的 JSON 对象
        """
        body = await self.read_body(request, limit)
        if not body.strip():
            return {}
        try:
            data = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise GatewayError(ErrorCode.INVALID_JSON, "Request body must be valid JSON")
        if not isinstance(data, dict):
            raise GatewayError(ErrorCode.INVALID_JSON, "Request body must be a JSON object")
        return data

    def base_url(self, request: Request) -> str:
        return (self.config.gateway.public_url or str(request.base_url)).rstrip("/")

    def session_url(self, request: Request, session: Session) -> str:
        """会话的纯文本协议地址：{base}{path_prefix}/{token}。"""
        prefix = self.config.channels.plaintext.path_prefix.rstrip("/")
        return f"{self.base_url(request)}{prefix}/{session.token}"
