"""
FreshMall FastAPI 主应用
"""
from contextlib import asynccontextmanager
from typing import Optional

import redis.asyncio as redis
from fastapi import FastAPI, Request, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder

from fm_core import __version__
from fm_core.config import get_settings
from fm_core.database import DatabaseManager, get_db_manager
from fm_core.event_bus import EventBus
from fm_core.middleware.auth import AuthMiddleware
from fm_core.middleware.logging import LoggingMiddleware
from fm_core.services import PaymentProvider
from fm_core.utils.errors import FreshMallException, InternalServerError
from fm_core.utils.logger import setup_logging, get_logger
from fm_core.utils.redis import close_redis, ping_redis
from fm_core.api import api_router
from fm_core.api.deps import Services

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    logger.info("Starting FreshMall application", version=__version__)

    services: Services = app.state.services
    db_manager: DatabaseManager = app.state.db_manager

    try:
        if not await db_manager.check_connection():
            raise RuntimeError("Database connection failed")

        await services.event_bus.initialize()
        logger.info("FreshMall application started successfully")
    except Exception:
        logger.error("Failed to start application", exc_info=True)
        raise

    yield

    logger.info("Shutting down FreshMall application")
    try:
        await services.event_bus.shutdown()
        await db_manager.close()
        await close_redis()
        logger.info("FreshMall application shutdown complete")
    except Exception:
        logger.error("Error during application shutdown", exc_info=True)


def create_app(
    db_manager: Optional[DatabaseManager] = None,
    redis_client: Optional[redis.Redis] = None,
    event_bus: Optional[EventBus] = None,
    payment_provider: Optional[PaymentProvider] = None
) -> FastAPI:
    """创建 FastAPI 应用

    存储句柄可由调用方注入（测试时传入 SQLite 与 fakeredis）。
    """
    settings = get_settings()

    setup_logging(
        log_level=settings.log_level,
        log_format=settings.log_format
    )

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        description="FreshMall Order Settlement API",
        docs_url="/docs" if settings.api_debug else None,
        redoc_url="/redoc" if settings.api_debug else None,
        openapi_url="/openapi.json" if settings.api_debug else None,
        lifespan=lifespan
    )

    db_manager = db_manager or get_db_manager()
    app.state.db_manager = db_manager
    app.state.services = Services(
        db_manager,
        redis_client=redis_client,
        event_bus=event_bus,
        payment_provider=payment_provider,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.api_debug else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    # 后添加的先执行：日志 → 认证 → 路由
    app.add_middleware(AuthMiddleware)
    app.add_middleware(LoggingMiddleware)

    app.include_router(api_router, prefix=settings.api_prefix)

    @app.exception_handler(FreshMallException)
    async def freshmall_exception_handler(request: Request, exc: FreshMallException):
        """业务异常统一输出 {error_kind, message} + Problem Details"""
        if exc.status >= 500:
            logger.error("Request failed", path=request.url.path, code=exc.code, detail=exc.detail)
        return exc.to_response(request)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """请求体校验失败，在访问存储之前拒绝"""
        logger.warning("Request validation failed", path=request.url.path, errors=str(exc.errors())[:500])
        return JSONResponse(
            status_code=422,
            content={
                "ok": False,
                "error_kind": "ValidationError",
                "message": "Request validation failed",
                "error": {
                    "type": "about:blank",
                    "title": "Validation Failed",
                    "status": 422,
                    "detail": "Request validation failed",
                    "code": "VALIDATION_ERROR",
                    "error_kind": "ValidationError",
                    "validation_errors": jsonable_encoder(exc.errors())
                }
            }
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """处理 FastAPI HTTP 异常（404 路由等）"""
        kind = "NotFound" if exc.status_code == 404 else "Internal"
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "ok": False,
                "error_kind": kind,
                "message": str(exc.detail),
                "error": {
                    "type": "about:blank",
                    "title": str(exc.detail),
                    "status": exc.status_code,
                    "code": f"HTTP_{exc.status_code}",
                    "error_kind": kind
                }
            }
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.error("Unhandled exception", path=request.url.path, exc_info=exc)
        return InternalServerError().to_response(request)

    @app.get("/healthz")
    async def health_check():
        """健康检查：数据库与 Redis"""
        db_ok = await app.state.db_manager.check_connection()
        redis_ok = await ping_redis(app.state.services.redis_client)
        healthy = db_ok and redis_ok
        return {
            "ok": healthy,
            "data": {
                "status": "healthy" if healthy else "degraded",
                "database": db_ok,
                "redis": redis_ok,
                "version": __version__
            }
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "fm_core.app:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_debug,
        log_level=settings.log_level.lower(),
        access_log=False,  # 使用自定义日志中间件
    )
