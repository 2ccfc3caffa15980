"""
文档块与向量模型
"""
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, JSON, UniqueConstraint
from sqlalchemy.sql import func
from pgvector.sqlalchemy import Vector
from ragpipe.core.config import settings
from ragpipe.core.database import Base


class ChunkType:
    """分块类型（与解析器输出的元素类型一致）"""
    TEXT = "Text"
    TABLE = "Table"


class Chunk(Base):
    """文档块表"""
    __tablename__ = "chunks"
    __mapper_args__ = {"eager_defaults": True}
    __table_args__ = (UniqueConstraint("file_id", "index", name="uq_chunks_file_index"),)

    id = Column(Integer, primary_key=True, index=True)
    file_id = Column(Integer, ForeignKey("files.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    index = Column(Integer, nullable=False)
    type = Column(String(32), nullable=False, default=ChunkType.TEXT)
    text = Column(Text, nullable=True)
    # 避免与 SQLAlchemy Declarative 保留名 metadata 冲突，改用 chunk_metadata
    # page_number；Table 类型另有 text_as_html
    chunk_metadata = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class Embedding(Base):
    """向量表：每个分块至多一条"""
    __tablename__ = "embeddings"

    id = Column(Integer, primary_key=True, index=True)
    chunk_id = Column(Integer, ForeignKey("chunks.id", ondelete="CASCADE"), nullable=False, unique=True)
    user_id = Column(String(64), nullable=False, index=True)
    # PostgreSQL 上为 pgvector 列，其他数据库退化为 JSON 数组
    embeddings = Column(Vector(settings.EMBEDDING_DIM).with_variant(JSON(), "sqlite"), nullable=False)
    model = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
