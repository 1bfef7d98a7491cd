"""
app.main
~~~~~~~~

FastAPI 应用入口 —— 注册路由、挂载中间件、定义生命周期。
"""
from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from app.api import live_endpoints, live_stream_ws
from app.core.config import settings
from app.core.errors import LiveError
from app.core.logging import get_logger, setup_logging
from app.core.rate_limit import limiter
from app.db import close_mongo, connect_mongo
from app.db.live_repository import LiveRepository
from app.schemas.api_response import ApiResponse
from app.services.live_system import LiveSystem

# 初始化日志系统（必须在其他模块之前）
setup_logging()
logger = get_logger(__name__)


# ── 生命周期 ──────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期钩子，仅在 worker 启动/关闭时各执行一次。"""
    # ── 启动 ──
    db = await connect_mongo()
    system = LiveSystem(LiveRepository(db))
    await system.restore()
    app.state.live_system = system
    logger.info(
        "🚀 应用已启动 | env=%s | debug=%s | log_level=%s | rtc=%s",
        settings.ENVIRONMENT,
        settings.debug,
        settings.effective_log_level,
        settings.rtc_configured,
    )
    yield
    # ── 关闭 ──
    await system.aclose()
    await close_mongo()
    logger.info("👋 应用已关闭")


# ── 创建 FastAPI 实例 ─────────────────────────────────────────────────

app: FastAPI = FastAPI(
    title=settings.PROJECT_NAME,
    description="直播间状态与实时互动广播 API",
    version=settings.VERSION,
    debug=settings.debug,
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

if settings.allow_cors_all_origins:
    # dev / test 环境：允许所有来源，方便本地调试
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
        allow_origins=[],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

# ── 路由挂载 ──────────────────────────────────────────────────────────
app.include_router(live_endpoints.router, prefix="/api", tags=["Live Session"])
app.include_router(live_stream_ws.router, tags=["WebSocket Live"])


# ── 全局异常处理器 ────────────────────────────────────────────────────

@app.exception_handler(LiveError)
async def live_error_handler(request: Request, exc: LiveError) -> JSONResponse:
    """业务异常统一转换为 ``ApiResponse.fail()``，``data`` 携带业务错误码。"""
    logger.warning("业务异常: %s %s -> %s %s", request.method, request.url.path, exc.code, exc.msg)
    response = ApiResponse.fail(msg=exc.msg, code=exc.status_code, data=exc.code)
    return JSONResponse(status_code=exc.status_code, content=response.model_dump())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """捕获所有未处理异常，返回统一的 ApiResponse.fail() 格式。"""
    logger.error("未捕获异常: %s %s -> %s", request.method, request.url, exc, exc_info=True)
    # 非 prod 环境返回详细错误信息，prod 环境隐藏内部细节
    detail = str(exc) if not settings.is_prod else "服务器内部错误"
    response = ApiResponse.fail(msg=detail, code=500, data=None)
    return JSONResponse(status_code=500, content=response.model_dump())


@app.get("/health", tags=["System"])
async def health_check(request: Request) -> JSONResponse:
    """验证服务是否正常运行。"""
    system: LiveSystem | None = getattr(request.app.state, "live_system", None)
    return JSONResponse(
        content={
            "status": "ok",
            "environment": settings.ENVIRONMENT,
            "debug": settings.debug,
            "log_level": settings.effective_log_level,
            "live_sessions": len(system.list_live()) if system else 0,
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.reload,  # 仅 dev 环境开启热重载
        log_level=settings.effective_log_level.lower(),
    )
