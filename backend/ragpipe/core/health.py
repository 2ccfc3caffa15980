"""
健康检查：数据库、Redis、MinIO 连通性
"""
import logging
from typing import Tuple

from ragpipe.core.config import settings

logger = logging.getLogger(__name__)


async def check_db() -> Tuple[bool, str]:
    """检查数据库连通性"""
    if not settings.DATABASE_URL.strip():
        return False, "DATABASE_URL 未配置"
    try:
        from ragpipe.core.database import engine
        from sqlalchemy import text
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True, "ok"
    except Exception as e:
        logger.warning("健康检查 DB 失败: %s", e)
        return False, str(e)


def check_redis() -> Tuple[bool, str]:
    """检查 Celery broker 所用 Redis 的连通性"""
    if not settings.celery_broker.strip():
        return False, "REDIS_URL 未配置"
    try:
        import redis
        r = redis.Redis.from_url(settings.celery_broker, socket_connect_timeout=2)
        r.ping()
        return True, "ok"
    except Exception as e:
        logger.warning("健康检查 Redis 失败: %s", e)
        return False, str(e)


def check_minio() -> Tuple[bool, str]:
    """检查 MinIO 连通性"""
    try:
        from ragpipe.services.blob_store import get_blob_store
        get_blob_store().client.bucket_exists(settings.MINIO_BUCKET_NAME)
        return True, "ok"
    except Exception as e:
        logger.warning("健康检查 MinIO 失败: %s", e)
        return False, str(e)
