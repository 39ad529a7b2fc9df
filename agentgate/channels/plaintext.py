"""
纯文本渠道实现 - 令牌嵌在 URL 中的极简协议。

面向只会发 HTTP 请求、不方便设置请求头的客户端（例如某些 LLM 工具调用）：
  GET  /s/{token}   纯轮询：取走缓冲事件，不执行任何命令，永远不报错
  POST /s/{token}   请求体为一行或多行纯文本命令，如：

      say hi
      move forward 500
      who

响应格式（永远包含 ok / events / commands）：
  {
    "ok": true,                  # 所有行都成功时为 true
    "agentStatus": "active",
    "events": [...],             # 执行完命令后取走的缓冲事件
    "commands": [...],           # 命令用法说明
    "results": [...]             # 提交了多行命令时出现，每行一个结果，顺序与输入一致
  }
只提交一行命令时，该行的结果直接合并到顶层（不再单独给出 results）。

每行结果：成功 {"ok": true, "action": ..., ...}；失败 {"ok": false, "error": CODE, "message": ...}
"""

from typing import Any

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse

from agentgate.channels.base import BaseChannel
from agentgate.commands.interpreter import TEXT_COMMANDS
from agentgate.errors import GatewayError
from agentgate.session.manager import Session
from agentgate.utils.helpers import parse_since


def _error_result(line: str, error: GatewayError) -> dict[str, Any]:
    return {"ok": False, "line": line, "error": error.code.value, "message": error.message}


class PlaintextChannel(BaseChannel):
    """URL 令牌 + 纯文本命令的协议适配器。"""

    name = "plaintext"

    def register(self, app: FastAPI) -> None:
        router = APIRouter(prefix=self.config.channels.plaintext.path_prefix.rstrip("/"))
        router.add_api_route("/{token}", self.poll, methods=["GET"])
        router.add_api_route("/{token}", self.submit, methods=["POST"])
        app.include_router(router)

    def _resolve(self, token: str) -> Session | JSONResponse:
        try:
            return self.gateway.resolve_token(token)
        except GatewayError as e:
            return JSONResponse(
                {"ok": False, "error": e.code.value, "message": e.message, "commands": TEXT_COMMANDS},
                status_code=e.http_status,
            )

    def _envelope(self, session: Session, since: int = 0) -> dict[str, Any]:
        events = self.gateway.poll(session, since)
        return {
            "ok": True,
            "agentStatus": session.status,
            "events": [e.to_dict() for e in events],
            "commands": TEXT_COMMANDS,
        }

    async def poll(self, request: Request, token: str) -> Any:
        session = self._resolve(token)
        if isinstance(session, JSONResponse):
            return session
        return self._envelope(session, parse_since(request.query_params.get("since")))

    async def submit(self, request: Request, token: str) -> Any:
        session = self._resolve(token)
        if isinstance(session, JSONResponse):
            return session

        try:
            body = (await self.read_body(request)).decode("utf-8", errors="replace")
        except GatewayError as e:
            return JSONResponse({**self._envelope(session), **_error_result("", e)}, status_code=e.http_status)

        results: list[dict[str, Any]] = []
        for parsed in self.gateway.interpreter.parse_text(body):
            if parsed.error is not None:
                results.append(_error_result(parsed.line, parsed.error))
                continue
            try:
                result = await self.gateway.execute(session, parsed.command)
            except GatewayError as e:
                results.append(_error_result(parsed.line, e))
                continue
            entry: dict[str, Any] = {"ok": True, "line": parsed.line, "action": result.action, **result.data}
            if result.warning:
                entry["warning"] = result.warning
            results.append(entry)

        response = self._envelope(session)
        if len(results) == 1:
            response.update(results[0])
        elif results:
            response["ok"] = all(r["ok"] for r in results)
            response["results"] = results
        return response
