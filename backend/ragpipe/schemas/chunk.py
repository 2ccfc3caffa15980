"""
分块与检索相关Schema
"""
from pydantic import BaseModel, model_validator
from datetime import datetime
from typing import Optional, List, Dict, Any


class ChunkItem(BaseModel):
    """分块列表单条（不含 file_id / user_id）"""
    id: int
    index: int
    type: str
    text: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    page_number: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ChunkListResponse(BaseModel):
    chunks: List[ChunkItem]
    page: int
    page_size: int


class ChunkText(BaseModel):
    """按文件还原的分块文本"""
    id: int
    text: str


class ChunkCount(BaseModel):
    """按文件分组的分块数"""
    id: int
    count: int


class SemanticSearchRequest(BaseModel):
    """语义检索请求：embedding 与 query 二选一，只给 query 时服务端先做向量化"""
    query: Optional[str] = None
    embedding: Optional[List[float]] = None
    file_ids: Optional[List[int]] = None

    @model_validator(mode="after")
    def _require_query_or_embedding(self):
        if not self.embedding and not (self.query and self.query.strip()):
            raise ValueError("query 与 embedding 至少提供一个")
        return self


class SemanticSearchChunk(BaseModel):
    """通用语义检索结果"""
    id: int
    index: int
    type: str
    text: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    similarity: Optional[float] = None


class ChatSearchChunk(BaseModel):
    """对话上下文检索结果，text 已按表格规则还原"""
    id: int
    index: int
    file_id: Optional[int] = None
    filename: Optional[str] = None
    text: Optional[str] = None
    similarity: Optional[float] = None


class ParseTaskRequest(BaseModel):
    """创建切分+向量化任务"""
    file_id: int


class ParseTaskResponse(BaseModel):
    """提交解析任务后的响应；sync 为 True 表示 Celery 不可用时已同步执行"""
    id: Optional[str] = None
    sync: bool = False
    message: str = "任务已提交，请轮询 GET /api/v1/files/{file_id} 查看状态"
