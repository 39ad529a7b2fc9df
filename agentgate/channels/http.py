"""
REST 渠道实现 - 无状态的 HTTP 协议。

路由一览：
  POST   /api/spawn                          创建会话（201），返回令牌
  GET    /api/avatars                        内置头像库
  GET    /api/agents/{id}/events?since=...   轮询事件（取走即消费）
  DELETE /api/agents/{id}                    下线（幂等）
  POST   /api/agents/{id}/{action}           执行命令（speak / move / face / look / who / ping / avatars / upload_avatar）

鉴权：
  Authorization: Bearer <token>
  - 令牌缺失或未知 → UNAUTHORIZED (401)
  - 令牌与路径中的 Agent ID 不匹配 → FORBIDDEN (403)
  - 会话已终止（保留期内）→ 命令返回 NOT_CONNECTED (409)，轮询仍可取走终止事件

错误响应统一为 {"error": CODE, "message": ...}，由应用级异常处理器渲染（见 gateway/app.py）。
"""

from typing import Any

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger

from agentgate.channels.base import BaseChannel
from agentgate.errors import ErrorCode, GatewayError
from agentgate.gateway.service import CommandResult
from agentgate.session.manager import Session
from agentgate.utils.helpers import parse_since


def extract_bearer(request: Request) -> str | None:
    auth = request.headers.get("authorization")
    if auth:
        parts = auth.split(" ", 1)
        if len(parts) == 2 and parts[0].lower() == "bearer":
            return parts[1].strip() or None
        return auth.strip() or None
    return None


def render_result(result: CommandResult, session: Session) -> dict[str, Any]:
    """命令结果 → REST 响应体。"""
    action, data = result.action, result.data
    if action == "speak":
        body: dict[str, Any] = {"status": "sent", **data}
    elif action == "move":
        body = {"status": "moving", **data}
    elif action == "face":
        body = {"status": "facing", **data}
    elif action == "pong":
        body = {"status": "pong", "agentStatus": session.status}
    else:
        body = dict(data)
    if result.warning:
        body["warning"] = result.warning
    return body


class HttpChannel(BaseChannel):
    """REST 协议适配器。"""

    name = "http"

    def register(self, app: FastAPI) -> None:
        router = APIRouter(prefix="/api")
        router.add_api_route("/spawn", self.spawn, methods=["POST"])
        router.add_api_route("/avatars", self.list_avatars, methods=["GET"])
        router.add_api_route("/agents/{agent_id}/events", self.events, methods=["GET"])
        router.add_api_route("/agents/{agent_id}", self.despawn, methods=["DELETE"])
        router.add_api_route("/agents/{agent_id}/{action}", self.action, methods=["POST"])
        app.include_router(router)

    def authenticate(self, request: Request, agent_id: str) -> Session:
        """
        校验 Bearer 令牌并确认它属于路径中的 Agent。

        返回的会话可能已经终止（保留期内），由调用方决定如何处理。
        """
        session = self.gateway.resolve_token(extract_bearer(request))
        if session.public_id != agent_id:
            logger.warning(f"Token for {session.public_id} used on agent {agent_id}")
            raise GatewayError(ErrorCode.FORBIDDEN, "Token does not belong to this agent")
        return session

    async def spawn(self, request: Request) -> JSONResponse:
        body = await self.read_json(request)
        session = await self.gateway.spawn(body.get("name"), body.get("avatar"), "http")
        payload = {
            **session.to_dict(),
            "token": session.token,
            "session": self.session_url(request, session),
        }
        return JSONResponse(payload, status_code=201)

    async def list_avatars(self) -> dict[str, Any]:
        return {"avatars": self.gateway.avatars.library.to_list()}

    async def events(self, request: Request, agent_id: str) -> dict[str, Any]:
        session = self.authenticate(request, agent_id)
        since = parse_since(request.query_params.get("since"))
        events = self.gateway.poll(session, since)
        return {"events": [e.to_dict() for e in events], "agentStatus": session.status}

    async def despawn(self, request: Request, agent_id: str) -> dict[str, Any]:
        session = self.authenticate(request, agent_id)
        await self.gateway.despawn(session.token)
        return {"status": "despawned"}

    async def action(self, request: Request, agent_id: str, action: str) -> dict[str, Any]:
        session = self.authenticate(request, agent_id)
        limit = None
        if self.gateway.interpreter.canonical_verb(action) == "upload_avatar":
            limit = self.config.avatars.max_upload_message_bytes
        args = await self.read_json(request, limit)
        command = self.gateway.interpreter.build(action, args)
        result = await self.gateway.execute(session, command)
        return render_result(result, session)
