# Database models
from ragpipe.models.file import File, GlobalFile, AsyncTaskStatus
from ragpipe.models.knowledge_base import KnowledgeBase, KnowledgeBaseFile
from ragpipe.models.chunk import Chunk, ChunkType, Embedding

__all__ = [
    "File",
    "GlobalFile",
    "AsyncTaskStatus",
    "KnowledgeBase",
    "KnowledgeBaseFile",
    "Chunk",
    "ChunkType",
    "Embedding",
]
