"""
文件相关API：哈希查重、预签名上传、创建/查询/删除文件记录
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ragpipe.api.deps import get_current_user_id
from ragpipe.core.database import get_db
from ragpipe.schemas.file import (
    CheckHashRequest,
    CheckHashResponse,
    FileCreate,
    FileCreateResponse,
    FileItem,
    FileListResponse,
    PresignRequest,
    PresignResponse,
)
from ragpipe.services.file_service import FileService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/check-hash", response_model=CheckHashResponse)
async def check_file_hash(
    body: CheckHashRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """按内容哈希查重；存在时返回已存储的元数据，客户端跳过上传"""
    return await FileService(db, user_id).check_hash(body.hash)


@router.post("/presign", response_model=PresignResponse)
async def create_presigned_url(
    body: PresignRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """获取对象存储预签名 PUT 地址"""
    try:
        url = await FileService(db, user_id).create_presigned_url(body.pathname)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return PresignResponse(url=url)


@router.post("", response_model=FileCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_file(
    body: FileCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """创建文件记录"""
    try:
        file_record = await FileService(db, user_id).create_file(body)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return FileCreateResponse(id=file_record.id, url=file_record.url)


@router.get("", response_model=FileListResponse)
async def get_files(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """获取文件列表"""
    return await FileService(db, user_id).get_files(page=page, page_size=page_size)


@router.get("/{file_id}", response_model=FileItem)
async def get_file(
    file_id: int,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """文件详情与任务状态快照，客户端轮询此接口"""
    item = await FileService(db, user_id).get_file_item(file_id)
    if not item:
        raise HTTPException(status_code=404, detail="文件不存在")
    return item


@router.delete("/{file_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_file(
    file_id: int,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """删除文件"""
    try:
        await FileService(db, user_id).delete_file(file_id)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    logger.info("用户 %s 删除文件 %s", user_id, file_id)
    return None
