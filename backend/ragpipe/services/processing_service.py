"""
解析任务：切分 + 向量化

流程：读取对象 -> 提取元素 -> 切分 -> 替换分块集合 -> 向量化 -> 批量写入向量。
每个阶段开始/结束都单独提交，客户端轮询 GET /files/{id} 即可看到中间状态。
"""
import logging
import time
import uuid
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ragpipe.core.config import settings
from ragpipe.models.file import AsyncTaskStatus, File
from ragpipe.services.chunk_service import ChunkService
from ragpipe.services.document_service import build_chunks, extract_elements
from ragpipe.services.embedding_service import get_embeddings
from ragpipe.services.file_service import FileService

logger = logging.getLogger(__name__)


def _task_error(name: str, e: Exception) -> dict:
    return {"name": name, "message": str(e) or type(e).__name__}


class ProcessingService:
    """文件解析任务服务类"""

    def __init__(self, db: AsyncSession, user_id: str):
        self.db = db
        self.user_id = user_id
        self.file_service = FileService(db, user_id)
        self.chunk_service = ChunkService(db, user_id)

    async def prepare_parse_task(self, file_id: int) -> File:
        """登记新一轮解析：清空上一轮状态，切分阶段置为 processing，分配任务 id"""
        file = await self.file_service.get_file(file_id)
        if not file:
            raise ValueError("文件不存在")
        file.reset_task_state()
        file.chunking_status = AsyncTaskStatus.PROCESSING
        file.chunk_task_id = str(uuid.uuid4())
        await self.db.commit()
        await self.db.refresh(file)
        return file

    async def mark_failed(self, file_id: int, stage: str, e: Exception) -> None:
        """任务无法进入执行（如提交失败）时标记错误，避免客户端一直轮询"""
        file = await self.file_service.get_file(file_id)
        if not file:
            return
        if stage == "embedding":
            file.embedding_status = AsyncTaskStatus.ERROR
            file.embedding_error = _task_error("EmbeddingError", e)
        else:
            file.chunking_status = AsyncTaskStatus.ERROR
            file.chunking_error = _task_error("ChunkingError", e)
        await self.db.commit()

    async def process_file(self, file_id: int, task_id: Optional[str] = None) -> dict:
        """执行切分与向量化，返回结果摘要。失败时写入对应阶段的错误并抛出 ValueError。"""
        file = await self.file_service.get_file(file_id)
        if not file:
            raise ValueError(f"文件 {file_id} 不存在")
        if task_id and file.chunk_task_id != task_id:
            # 已有更新一轮的解析，当前任务作废
            logger.info("文件 %s 的解析任务 %s 已被 %s 取代，跳过", file_id, task_id, file.chunk_task_id)
            return {"file_id": file_id, "skipped": True}

        started = time.monotonic()
        chunk_ids = await self._run_chunking(file)
        embedded = await self._run_embedding(file, chunk_ids)
        duration = round(time.monotonic() - started, 2)
        logger.info("文件 %s 解析完成：%s 个分块，%s 个向量，耗时 %ss", file_id, len(chunk_ids), embedded, duration)
        return {"file_id": file_id, "chunk_count": len(chunk_ids), "embedding_count": embedded, "duration": duration}

    async def _run_chunking(self, file: File) -> list:
        file_id = file.id
        file.chunking_status = AsyncTaskStatus.PROCESSING
        await self.db.commit()
        try:
            content = await self.file_service.get_file_content(file)
            elements = extract_elements(content, file.file_type, file.name)
            drafts = build_chunks(elements)
            # 重新解析时替换整组分块，不在原分块上修改
            await self.chunk_service.delete_by_file(file.id)
            chunk_ids = await self.chunk_service.bulk_create([
                {
                    "file_id": file.id,
                    "index": d.index,
                    "type": d.type,
                    "text": d.text,
                    "chunk_metadata": d.metadata,
                }
                for d in drafts
            ])
        except Exception as e:
            logger.exception("文件 %s 切分失败: %s", file_id, e)
            await self.db.rollback()
            await self.mark_failed(file_id, "chunking", e)
            raise ValueError(f"文件 {file_id} 切分失败: {e}")

        file.chunking_status = AsyncTaskStatus.SUCCESS
        file.embedding_status = AsyncTaskStatus.PROCESSING
        await self.db.commit()
        logger.info("文件 %s 切分为 %s 个分块", file.id, len(chunk_ids))
        return chunk_ids

    async def _run_embedding(self, file: File, chunk_ids: list) -> int:
        file_id = file.id
        try:
            texts = await self.chunk_service.text_for_file(file.id)
            text_by_id = {t["id"]: t["text"] for t in texts}
            # 文本为空的分块不参与向量化
            targets = [cid for cid in chunk_ids if cid in text_by_id]
            embeddings = await get_embeddings([text_by_id[cid] for cid in targets])
            await self.chunk_service.bulk_create_embeddings([
                {"chunk_id": cid, "embeddings": list(vec), "model": settings.EMBEDDING_MODEL}
                for cid, vec in zip(targets, embeddings)
            ])
        except Exception as e:
            logger.exception("文件 %s 向量化失败: %s", file_id, e)
            await self.db.rollback()
            await self.mark_failed(file_id, "embedding", e)
            raise ValueError(f"文件 {file_id} 向量化失败: {e}")

        await self.db.refresh(file)
        file.embedding_status = AsyncTaskStatus.SUCCESS
        file.finish_embedding = True
        await self.db.commit()
        return len(targets)
