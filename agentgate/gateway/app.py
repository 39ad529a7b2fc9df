"""
FastAPI 应用工厂 (gateway/app.py)

create_app() 组装整个网关进程：
    GatewayService（业务层）+ ChannelManager（三种协议适配器）+ 公共路由

公共路由：
    GET /health  → {"status": "ok", "agents": 存活会话数}

应用生命周期（lifespan）：
    启动：看门狗开始巡检，渠道进入运行状态
    退出：关闭所有 WebSocket 连接，移除全部会话（释放世界连接），关闭 HTTP 客户端

错误渲染：
    GatewayError → {"error": CODE, "message": ...}，状态码见 errors.HTTP_STATUS
    未预期的异常 → INTERNAL_ERROR (500)，记录日志
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from agentgate import __version__
from agentgate.channels.manager import ChannelManager
from agentgate.config.schema import Config
from agentgate.errors import ErrorCode, GatewayError
from agentgate.gateway.service import BridgeFactory, GatewayService


def create_app(
    config: Config | None = None,
    gateway: GatewayService | None = None,
    bridge_factory: BridgeFactory | None = None,
) -> FastAPI:
    """
    创建网关 FastAPI 应用。

    参数:
        config: 根配置（默认全部取默认值）
        gateway: 预先构造的网关服务（测试中注入）
        bridge_factory: 世界连接工厂（未传入 gateway 时使用）
    """
    config = config or Config()
    gateway = gateway or GatewayService(config, bridge_factory=bridge_factory)
    channels = ChannelManager(config, gateway)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await gateway.start()
        await channels.start_all()
        logger.info(f"Gateway ready, channels: {', '.join(channels.enabled_channels)}")
        yield
        await channels.stop_all()
        await gateway.shutdown()

    app = FastAPI(title="agentgate", version=__version__, lifespan=lifespan)
    app.state.config = config
    app.state.gateway = gateway
    app.state.channels = channels

    if config.channels.http.enabled:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.channels.http.allow_origins,
            allow_credentials=False,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.exception_handler(GatewayError)
    async def _gateway_error(request: Request, exc: GatewayError) -> JSONResponse:
        return JSONResponse({"error": exc.code.value, "message": exc.message}, status_code=exc.http_status)

    @app.exception_handler(Exception)
    async def _unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}")
        return JSONResponse(
            {"error": ErrorCode.INTERNAL_ERROR.value, "message": "Internal error"},
            status_code=500,
        )

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok", "agents": len(gateway.registry), "channels": channels.get_status()}

    channels.mount(app)
    return app
