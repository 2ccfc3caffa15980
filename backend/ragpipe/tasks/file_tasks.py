"""
文件解析异步任务：切分 + 向量化
在 Celery Worker 中执行，接口快速返回任务 id，客户端轮询 GET /files/{file_id} 查看各阶段状态。
注意：必须使用任务内创建的 engine/session（create_async_engine_and_session_for_celery），
不能使用全局 AsyncSessionLocal，否则会报 "Future attached to a different loop"。
"""
import asyncio
import logging
from typing import Any, Dict

from ragpipe.celery_app import celery_app
from ragpipe.core.database import create_async_engine_and_session_for_celery
from ragpipe.services.processing_service import ProcessingService

logger = logging.getLogger(__name__)


def _run_async(coro):
    """在同步上下文中运行异步协程（Celery 任务内使用）"""
    loop = asyncio.new_event_loop()
    try:
        asyncio.set_event_loop(loop)
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _with_celery_db(async_fn):
    """在任务内创建当前 loop 的 engine/session，执行 async_fn(db)，用完后 dispose engine。"""
    async def _run():
        engine, session_factory = create_async_engine_and_session_for_celery()
        try:
            async with session_factory() as db:
                return await async_fn(db)
        finally:
            await engine.dispose()
    return _run


@celery_app.task(bind=True, name="file.parse")
def parse_file_task(self, file_id: int, user_id: str, task_id: str) -> Dict[str, Any]:
    """异步：解析文件（切分 + 向量化），阶段状态写回 files 表"""
    logger.info("parse_file_task 开始 file_id=%s task_id=%s", file_id, task_id)

    async def _run(db):
        return await ProcessingService(db, user_id).process_file(file_id, task_id)

    try:
        return _run_async(_with_celery_db(_run)())
    except Exception as e:
        logger.exception("parse_file_task failed: %s", e)
        raise
