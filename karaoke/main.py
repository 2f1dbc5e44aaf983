"""
karaoke.main
~~~~~~~~~~~~

FastAPI 应用入口 —— 注册路由、挂载中间件、定义生命周期。

房间目录、事件网关与语音桥接器在 lifespan 中创建并挂载于 ``app.state``，
每个应用实例拥有独立的一套，测试时可以为每个用例创建全新的应用。
"""
from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from karaoke.api import party_ws, presence_endpoints, room_endpoints, search_endpoints
from karaoke.core.logging import get_logger, setup_logging
from karaoke.core.rate_limit import limiter
from karaoke.core.settings import settings
from karaoke.schemas.api_response import ApiResponse
from karaoke.services.gateway import PartyGateway
from karaoke.services.media_search import MediaSearchProvider
from karaoke.services.presence import PresenceBridge, VoiceClient
from karaoke.services.room_directory import RoomDirectory

# 初始化日志系统（必须在其他模块之前）
setup_logging()
logger = get_logger(__name__)


async def sweep_idle_rooms(gateway: PartyGateway) -> None:
    """周期清理空闲房间，直到被取消。"""
    while True:
        await asyncio.sleep(settings.ROOM_SWEEP_INTERVAL_SECONDS)
        try:
            gateway.sweep_idle(settings.ROOM_IDLE_TIMEOUT_SECONDS)
        except Exception as e:
            logger.error("空闲房间清理失败: %s", e, exc_info=True)


def _fail(status_code: int, msg: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ApiResponse.fail(status_code, msg).model_dump(),
    )


def create_app(
    voice_client: VoiceClient | None = None,
    media_search: MediaSearchProvider | None = None,
) -> FastAPI:
    """创建应用实例。

    Args:
        voice_client: 进程内语音平台客户端；为 ``None`` 时语音在线状态只能通过 HTTP 推送。
        media_search: 歌曲搜索提供方；为 ``None`` 时 ``/api/search`` 返回 503。
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """应用生命周期钩子，仅在 worker 启动/关闭时各执行一次。"""
        # ── 启动 ──
        directory = RoomDirectory()
        gateway = PartyGateway(directory)
        presence = PresenceBridge(gateway, voice_client=voice_client)
        gateway.presence = presence

        app.state.directory = directory
        app.state.gateway = gateway
        app.state.presence = presence
        app.state.media_search = media_search

        if not presence.available:
            logger.warning("⚠️ 未配置语音客户端，语音频道功能不可用（房间协调功能不受影响）")

        sweeper = asyncio.create_task(sweep_idle_rooms(gateway))
        logger.info(
            "🚀 应用已启动 | env=%s | debug=%s | log_level=%s",
            settings.ENVIRONMENT,
            settings.debug,
            settings.effective_log_level,
        )
        yield
        # ── 关闭 ──
        sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper
        await presence.aclose()
        logger.info("👋 应用已关闭")

    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="卡拉 OK 派对房间协调服务",
        version=settings.VERSION,
        debug=settings.debug,
        lifespan=lifespan,
    )
    app.state.limiter = limiter

    # ── CORS 中间件 ──────────────────────────────────────────────────
    if settings.allow_cors_all_origins:
        # dev / test 环境：允许所有来源，方便局域网内手机直接访问
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
    else:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.ALLOWED_ORIGINS,
            allow_methods=["GET", "POST"],
            allow_headers=["*"],
        )

    # ── 路由挂载 ──────────────────────────────────────────────────────
    app.include_router(room_endpoints.router, prefix="/api", tags=["Rooms"])
    app.include_router(search_endpoints.router, prefix="/api", tags=["Search"])
    app.include_router(presence_endpoints.router, prefix="/api", tags=["Voice Presence"])
    app.include_router(party_ws.router, tags=["WebSocket Party"])

    # ── 异常处理器 ────────────────────────────────────────────────────

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        """把 HTTP 错误包装为统一的 ApiResponse.fail() 格式。"""
        return _fail(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.info("请求参数校验失败: %s %s", request.method, request.url.path)
        return _fail(422, "Invalid request")

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
        logger.warning("触发限流 | ip=%s | %s", request.client.host if request.client else "-", exc.detail)
        return _fail(429, "Too many requests")

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """捕获所有未处理异常；非 prod 环境返回详细错误信息，prod 环境隐藏内部细节。"""
        logger.error("未捕获异常: %s %s -> %s", request.method, request.url, exc, exc_info=True)
        return _fail(500, str(exc) if not settings.is_prod else "服务器内部错误")

    @app.get("/health", tags=["System"])
    async def health_check(request: Request) -> JSONResponse:
        """验证服务是否正常运行。"""
        directory: RoomDirectory = request.app.state.directory
        presence: PresenceBridge = request.app.state.presence
        return JSONResponse(
            content={
                "status": "ok",
                "environment": settings.ENVIRONMENT,
                "room_count": len(directory),
                "voice_presence": presence.available,
                "message": "🎤 Karaoke party server is running!",
            },
        )

    return app


app: FastAPI = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "karaoke.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.reload,  # 仅 dev 环境开启热重载
        log_level=settings.effective_log_level.lower(),
    )
