"""
知识库相关Schema
"""
from pydantic import BaseModel
from datetime import datetime
from typing import Optional, List

from ragpipe.schemas.file import FileItem


class KnowledgeBaseCreate(BaseModel):
    """知识库创建"""
    name: str
    description: Optional[str] = None


class KnowledgeBaseResponse(BaseModel):
    """知识库响应"""
    id: int
    name: str
    description: Optional[str] = None
    file_count: int = 0
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class KnowledgeBaseListResponse(BaseModel):
    """知识库列表响应"""
    knowledge_bases: List[KnowledgeBaseResponse]
    total: int
    page: int
    page_size: int


class KnowledgeBaseFileListResponse(BaseModel):
    """知识库内文件列表响应"""
    files: List[FileItem]
    total: int
    page: int
    page_size: int
