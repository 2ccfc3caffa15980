"""
客户端上传条目：仅存在于当前会话，不落库
"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
import enum

from ragpipe.models.file import AsyncTaskStatus
from ragpipe.schemas.file import TaskError


class UploadStatus(str, enum.Enum):
    PENDING = "pending"
    UPLOADING = "uploading"
    PROCESSING = "processing"
    SUCCESS = "success"
    ERROR = "error"


class LocalFile(BaseModel):
    """待上传的本地字节源"""
    model_config = ConfigDict(frozen=True)

    name: str
    type: str = ""  # MIME，为空时由内容探测
    data: bytes = Field(repr=False)

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def is_image(self) -> bool:
        return self.type.startswith("image")

    @property
    def is_previewable(self) -> bool:
        return self.type.startswith("image") or self.type.startswith("video")


class UploadState(BaseModel):
    """传输进度。progress 0..100，speed 字节/秒，rest_time 剩余秒数"""
    progress: float = 0
    speed: float = 0
    rest_time: float = 0


class FileTasks(BaseModel):
    """切分/向量化进度；尚未产生的字段为 None"""
    chunk_count: Optional[int] = None
    chunking_status: Optional[AsyncTaskStatus] = None
    chunking_error: Optional[TaskError] = None
    embedding_status: Optional[AsyncTaskStatus] = None
    embedding_error: Optional[TaskError] = None
    finish_embedding: bool = False


class UploadFileItem(BaseModel):
    """上传列表中的一项。id 初始为原始文件名，创建记录后替换为服务端文件 id"""
    id: str
    file: LocalFile
    status: UploadStatus = UploadStatus.PENDING
    base64_url: Optional[str] = Field(default=None, repr=False)
    upload_state: Optional[UploadState] = None
    tasks: Optional[FileTasks] = None
    file_url: Optional[str] = None
    error: Optional[str] = None
