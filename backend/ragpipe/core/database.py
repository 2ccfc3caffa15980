"""
数据库：异步引擎、会话工厂与 Declarative Base
"""
from typing import AsyncGenerator, Tuple

from sqlalchemy.ext.asyncio import AsyncSession, AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from ragpipe.core.config import settings

Base = declarative_base()


def _create_engine(url: str = None) -> AsyncEngine:
    url = url or settings.DATABASE_URL
    kwargs = {"echo": settings.DATABASE_ECHO, "future": True}
    if not url.startswith("sqlite"):
        # sqlite 不支持连接池参数
        kwargs.update(pool_pre_ping=True, pool_size=10, max_overflow=20)
    return create_async_engine(url, **kwargs)


engine = _create_engine()
AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI 依赖：每个请求一个会话"""
    async with AsyncSessionLocal() as session:
        yield session


def create_async_engine_and_session_for_celery() -> Tuple[AsyncEngine, async_sessionmaker]:
    """Celery 任务内使用：在当前事件循环上新建 engine 与 session 工厂。

    全局 engine 绑定在 API 进程的事件循环上，任务中复用会报 "Future attached to a different loop"。
    """
    task_engine = _create_engine()
    session_factory = async_sessionmaker(task_engine, class_=AsyncSession, expire_on_commit=False)
    return task_engine, session_factory


def is_postgres() -> bool:
    """当前数据库是否为 PostgreSQL（决定是否可用 pgvector 检索）"""
    return settings.DATABASE_URL.startswith("postgresql")
