"""
分块相关API：解析任务、分块查询、语义检索
"""
import asyncio
import logging
from typing import Any, Callable, List

from fastapi import APIRouter, Depends, HTTPException, Query, status
from kombu.exceptions import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from ragpipe.api.deps import get_current_user_id
from ragpipe.core.config import settings
from ragpipe.core.database import get_db
from ragpipe.schemas.chunk import (
    ChatSearchChunk,
    ChunkCount,
    ChunkItem,
    ChunkListResponse,
    ChunkText,
    ParseTaskRequest,
    ParseTaskResponse,
    SemanticSearchChunk,
    SemanticSearchRequest,
)
from ragpipe.services.chunk_service import ChunkService
from ragpipe.services.embedding_service import get_embedding
from ragpipe.services.processing_service import ProcessingService
from ragpipe.tasks.file_tasks import parse_file_task

logger = logging.getLogger(__name__)

router = APIRouter()


async def _submit_celery_task(submit_fn: Callable[[], Any]):
    """在线程池中执行 submit_fn（即 task.delay()），超时则抛 asyncio.TimeoutError。"""
    loop = asyncio.get_running_loop()
    return await asyncio.wait_for(
        loop.run_in_executor(None, submit_fn),
        timeout=settings.CELERY_SUBMIT_TIMEOUT,
    )


async def _query_embedding(body: SemanticSearchRequest) -> List[float]:
    if body.embedding:
        return body.embedding
    try:
        return await get_embedding(body.query)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))


@router.post("/tasks", response_model=ParseTaskResponse)
async def create_parse_file_task(
    body: ParseTaskRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """创建切分+向量化任务：接口立即返回任务 id，客户端轮询 GET /files/{file_id}。Redis/Celery 不可用或提交超时时降级为同步执行。"""
    service = ProcessingService(db, user_id)
    try:
        file = await service.prepare_parse_task(body.file_id)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    task_id = file.chunk_task_id

    try:
        await _submit_celery_task(
            lambda: parse_file_task.apply_async(args=(file.id, user_id, task_id), task_id=task_id)
        )
        logger.info("解析任务已提交 file_id=%s task_id=%s", file.id, task_id)
        return ParseTaskResponse(id=task_id)
    except (asyncio.TimeoutError, OperationalError, ConnectionError) as e:
        logger.warning("Celery/Redis 不可用（%s），降级为同步解析 file_id=%s", type(e).__name__, file.id)

    try:
        await service.process_file(file.id, task_id)
        message = "Redis/Celery 不可用，已同步执行完成"
    except ValueError as e:
        # 失败信息已写入文件的任务状态，客户端轮询时读到 error
        message = str(e)
    return ParseTaskResponse(id=task_id, sync=True, message=message)


@router.post("/search", response_model=List[SemanticSearchChunk])
async def semantic_search(
    body: SemanticSearchRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """语义检索：按相似度降序返回前 SEMANTIC_SEARCH_LIMIT 个分块"""
    embedding = await _query_embedding(body)
    try:
        return await ChunkService(db, user_id).semantic_search(embedding, body.file_ids)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.post("/search/chat", response_model=List[ChatSearchChunk])
async def semantic_search_for_chat(
    body: SemanticSearchRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """对话上下文检索：前 CHAT_SEARCH_LIMIT 个分块，附文件名"""
    embedding = await _query_embedding(body)
    try:
        return await ChunkService(db, user_id).semantic_search_for_chat(embedding, body.file_ids)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.get("/counts", response_model=List[ChunkCount])
async def count_chunks_by_files(
    file_ids: List[int] = Query(default=[]),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """按文件统计分块数；没有分块的文件不出现在结果中"""
    return await ChunkService(db, user_id).count_by_files(file_ids)


@router.get("/files/{file_id}", response_model=ChunkListResponse)
async def list_chunks_by_file(
    file_id: int,
    page: int = Query(0, ge=0),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """文件的分块列表，按 index 升序分页，page 从 0 开始"""
    chunks = await ChunkService(db, user_id).list_by_file(file_id, page)
    return ChunkListResponse(
        chunks=[ChunkItem(**c) for c in chunks],
        page=page,
        page_size=settings.CHUNK_PAGE_SIZE,
    )


@router.get("/files/{file_id}/texts", response_model=List[ChunkText])
async def get_chunk_texts(
    file_id: int,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """文件全部分块的还原文本（表格附 HTML）"""
    return await ChunkService(db, user_id).text_for_file(file_id)


@router.delete("/{chunk_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_chunk(
    chunk_id: int,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """删除单个分块；不存在时同样返回 204"""
    await ChunkService(db, user_id).delete_chunk(chunk_id)
    return None
