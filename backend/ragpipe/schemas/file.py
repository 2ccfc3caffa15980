"""
文件相关Schema
"""
from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List, Dict, Any

from ragpipe.models.file import AsyncTaskStatus


class FileMetadata(BaseModel):
    """存储元数据：小时桶 + 目录 + 文件名"""
    date: str
    dirname: str
    filename: str
    path: str


class CheckHashRequest(BaseModel):
    """哈希查重请求"""
    hash: str = Field(..., min_length=64, max_length=64)


class CheckHashResponse(BaseModel):
    """哈希查重响应；存在时带回已存储的元数据"""
    is_exist: bool
    metadata: Optional[FileMetadata] = None
    url: Optional[str] = None


class PresignRequest(BaseModel):
    """预签名上传地址请求"""
    pathname: str


class PresignResponse(BaseModel):
    url: str


class FileCreate(BaseModel):
    """创建文件记录（上传完成或命中去重后调用）"""
    name: str
    file_type: str
    size: int
    hash: str
    url: str
    metadata: Optional[Dict[str, Any]] = None
    knowledge_base_id: Optional[int] = None


class FileCreateResponse(BaseModel):
    id: int
    url: str


class TaskError(BaseModel):
    """任务失败信息"""
    name: str
    message: str


class FileItem(BaseModel):
    """文件详情，含切分/向量化任务状态快照（轮询用）。

    任务字段在对应阶段开始之前为 None，而不是缺省。
    """
    id: int
    name: str
    file_type: str
    size: int
    url: str
    hash: Optional[str] = None
    chunk_count: Optional[int] = None
    chunking_status: Optional[AsyncTaskStatus] = None
    chunking_error: Optional[TaskError] = None
    embedding_status: Optional[AsyncTaskStatus] = None
    embedding_error: Optional[TaskError] = None
    finish_embedding: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class FileListResponse(BaseModel):
    """文件列表响应"""
    files: List[FileItem]
    total: int
    page: int
    page_size: int
