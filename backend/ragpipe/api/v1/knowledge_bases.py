"""
知识库相关API
"""
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ragpipe.api.deps import get_current_user_id
from ragpipe.core.database import get_db
from ragpipe.schemas.knowledge_base import (
    KnowledgeBaseCreate,
    KnowledgeBaseFileListResponse,
    KnowledgeBaseListResponse,
    KnowledgeBaseResponse,
)
from ragpipe.services.knowledge_base_service import KnowledgeBaseService

router = APIRouter()


@router.post("", response_model=KnowledgeBaseResponse, status_code=status.HTTP_201_CREATED)
async def create_knowledge_base(
    kb_data: KnowledgeBaseCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db)
):
    """创建知识库"""
    return await KnowledgeBaseService(db, user_id).create_knowledge_base(kb_data)


@router.get("", response_model=KnowledgeBaseListResponse)
async def get_knowledge_bases(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db)
):
    """获取知识库列表"""
    return await KnowledgeBaseService(db, user_id).get_knowledge_bases(page, page_size)


@router.get("/{kb_id}/files", response_model=KnowledgeBaseFileListResponse)
async def get_files_in_knowledge_base(
    kb_id: int,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """查询知识库内的文件列表（含分块数）"""
    try:
        return await KnowledgeBaseService(db, user_id).get_files_in_knowledge_base(kb_id, page, page_size)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
