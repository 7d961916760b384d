"""FastAPI 应用入口"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from wallcraft.api.admin import router as admin_router  # 管理员 API
from wallcraft.api.usage import router as usage_router  # 用量配额
from wallcraft.api.wanx import router as wanx_router  # 图生视频
from wallcraft.core.config import get_settings
from wallcraft.core.database import close_db, init_db
from wallcraft.core.errors import WallcraftError
from wallcraft.middleware.request_size import RequestSizeLimitMiddleware

settings = get_settings()

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

# multipart 表单头部的余量
MULTIPART_OVERHEAD = 1024 * 1024


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期管理"""
    # 启动时 - 建表（已存在则跳过）
    await init_db()
    logger.info(f"{settings.app_name} v{settings.app_version} 启动")

    yield

    # 关闭时
    await close_db()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="动态壁纸 AI 视频生成 API",
    lifespan=lifespan,
)

# 1. 请求大小限制（最先检查，防止大文件攻击）
app.add_middleware(
    RequestSizeLimitMiddleware,
    max_size=settings.max_upload_bytes + MULTIPART_OVERHEAD,
)

# 2. CORS 中间件（必须在最外层）
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(WallcraftError)
async def wallcraft_error_handler(request: Request, exc: WallcraftError):
    """业务错误统一渲染为 {"error": ..., "code": ...}"""
    if exc.status_code >= 500:
        logger.warning(f"{request.method} {request.url.path} -> {exc.status_code} {exc.code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """未预期的异常，不向客户端暴露内部细节"""
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={"error": "服务器内部错误", "code": "internal_error"},
    )


# 注册路由
app.include_router(usage_router)  # 用量配额 API
app.include_router(wanx_router)  # 通义万相 API
app.include_router(admin_router)  # 管理员 API


@app.get("/health")
async def health_check() -> dict:
    """健康检查端点"""
    return {"status": "healthy", "version": settings.app_version}


@app.get("/")
async def root() -> dict:
    """根端点"""
    return {"message": "欢迎使用 Wallcraft 动态壁纸 API", "docs": "/docs"}
