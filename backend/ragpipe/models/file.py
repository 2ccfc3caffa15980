"""
文件模型
"""
from sqlalchemy import Column, Integer, String, BigInteger, Boolean, DateTime, JSON, Enum as SQLEnum
from sqlalchemy.sql import func
import enum
from ragpipe.core.database import Base


class AsyncTaskStatus(str, enum.Enum):
    """切分/向量化任务状态"""
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    ERROR = "error"


class GlobalFile(Base):
    """全局文件表：按内容哈希去重，与上传者无关"""
    __tablename__ = "global_files"

    hash_id = Column(String(64), primary_key=True)
    file_type = Column(String(255), nullable=False)
    size = Column(BigInteger, nullable=False)
    url = Column(String(1024), nullable=False)
    file_metadata = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class File(Base):
    """文件表：每次「挂载」一条记录，多条记录可指向同一个存储位置"""
    __tablename__ = "files"
    # updated_at 由数据库生成，写入后立即取回，避免异步会话里的懒加载
    __mapper_args__ = {"eager_defaults": True}

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    file_type = Column(String(255), nullable=False)  # MIME
    size = Column(BigInteger, nullable=False)
    hash = Column(String(64), nullable=True, index=True)
    url = Column(String(1024), nullable=False)
    # 存储元数据：date（小时桶）、dirname、filename、path
    file_metadata = Column(JSON, nullable=True)

    chunk_task_id = Column(String(64), nullable=True)
    chunking_status = Column(SQLEnum(AsyncTaskStatus), nullable=True)
    chunking_error = Column(JSON, nullable=True)  # {"name": ..., "message": ...}
    embedding_status = Column(SQLEnum(AsyncTaskStatus), nullable=True)
    embedding_error = Column(JSON, nullable=True)
    finish_embedding = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def reset_task_state(self) -> None:
        """重新解析前清空上一轮的任务状态"""
        self.chunking_status = None
        self.chunking_error = None
        self.embedding_status = None
        self.embedding_error = None
        self.finish_embedding = False
