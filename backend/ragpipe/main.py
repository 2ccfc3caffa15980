"""
FastAPI主应用入口
"""
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

import ragpipe.models  # noqa: F401  注册全部表到 Base.metadata
from ragpipe.api.v1 import api_router
from ragpipe.core.config import settings
from ragpipe.core.database import Base, engine
from ragpipe.core.health import check_db, check_minio, check_redis
from ragpipe.core.logging import setup_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    setup_logging()
    async with engine.begin() as conn:
        if engine.dialect.name == "postgresql":
            from sqlalchemy import text
            await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        await conn.run_sync(Base.metadata.create_all)
    logger.info("%s 启动完成，向量检索后端: %s", settings.PROJECT_NAME, settings.VECTOR_DB_TYPE)

    yield

    await engine.dispose()


app = FastAPI(
    title=settings.PROJECT_NAME,
    description="文档去重上传、切分向量化与语义检索API",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# CORS配置
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# GZip压缩
app.add_middleware(GZipMiddleware, minimum_size=1000)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """为每个请求生成或透传 X-Request-ID，并写入 request.state"""
    rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = rid
    response = await call_next(request)
    response.headers["X-Request-ID"] = rid
    return response


def _error_response(detail: str, request_id: Optional[str] = None) -> dict:
    body = {"detail": detail}
    if request_id:
        body["request_id"] = request_id
    return body


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """统一 HTTP 异常响应格式"""
    rid = getattr(request.state, "request_id", None)
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_response(exc.detail if isinstance(exc.detail, str) else str(exc.detail), rid),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """422 校验错误统一格式"""
    rid = getattr(request.state, "request_id", None)
    errs = exc.errors()
    detail = errs[0].get("msg", "请求参数校验失败") if errs else "请求参数校验失败"
    body = _error_response(detail, rid)
    body["errors"] = [{"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")} for e in errs]
    return JSONResponse(status_code=422, content=body)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """未捕获异常统一格式"""
    rid = getattr(request.state, "request_id", None)
    logger.exception("未处理异常 request_id=%s: %s", rid, exc)
    return JSONResponse(status_code=500, content=_error_response("服务器内部错误", rid))


# 注册路由
app.include_router(api_router, prefix=settings.API_V1_STR)


@app.get("/health")
async def health_check():
    """健康检查：返回各依赖连通状态"""
    db_ok, db_msg = await check_db()
    redis_ok, redis_msg = check_redis()
    minio_ok, minio_msg = check_minio()
    all_ok = db_ok and redis_ok and minio_ok
    return JSONResponse(
        content={
            "status": "healthy" if all_ok else "degraded",
            "service": "ragpipe-api",
            "dependencies": {
                "database": {"ok": db_ok, "message": db_msg},
                "redis": {"ok": redis_ok, "message": redis_msg},
                "minio": {"ok": minio_ok, "message": minio_msg},
            },
        }
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("ragpipe.main:app", host="0.0.0.0", port=8000, reload=True)
