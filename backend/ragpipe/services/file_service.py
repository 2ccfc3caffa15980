"""
文件服务：哈希查重、预签名地址、文件记录的创建/查询/删除
"""
import asyncio
import logging
from typing import Any, Dict, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from ragpipe.core.config import settings
from ragpipe.models.file import File, GlobalFile
from ragpipe.models.knowledge_base import KnowledgeBase, KnowledgeBaseFile
from ragpipe.schemas.file import FileCreate, FileItem, FileListResponse
from ragpipe.services.blob_store import BlobStore, get_blob_store
from ragpipe.services.chunk_service import ChunkService

logger = logging.getLogger(__name__)


class FileService:
    """文件服务类"""

    def __init__(self, db: AsyncSession, user_id: str, blob_store: Optional[BlobStore] = None):
        self.db = db
        self.user_id = user_id
        self.blob_store = blob_store or get_blob_store()

    async def check_hash(self, file_hash: str) -> Dict[str, Any]:
        """按内容哈希查全局文件表（与上传者无关）"""
        global_file = await self.db.get(GlobalFile, file_hash)
        if not global_file:
            return {"is_exist": False}
        return {
            "is_exist": True,
            "metadata": global_file.file_metadata,
            "url": global_file.url,
        }

    async def create_presigned_url(self, pathname: str) -> str:
        """MinIO 客户端是同步的，放到线程池执行"""
        if not pathname.startswith(f"{settings.S3_FILE_PATH}/") or ".." in pathname:
            raise ValueError("非法的上传路径")
        return await asyncio.to_thread(self.blob_store.presign, pathname)

    async def create_file(self, params: FileCreate) -> File:
        """创建文件记录。首次出现的哈希同时写入全局文件表；可选挂到知识库。

        同一内容可以有多条 File 记录（每次挂载一条），都指向同一个存储位置。
        """
        if params.size > settings.MAX_FILE_SIZE:
            raise ValueError(f"文件大小超过限制（{settings.MAX_FILE_SIZE}字节）")
        kb = None
        if params.knowledge_base_id is not None:
            kb = await self.db.scalar(
                select(KnowledgeBase).where(
                    KnowledgeBase.id == params.knowledge_base_id,
                    KnowledgeBase.user_id == self.user_id,
                )
            )
            if not kb:
                raise ValueError("知识库不存在")

        # 同批次相同内容会并发创建记录，全局文件表只保留第一条
        dialect_insert = sqlite_insert if self.db.get_bind().dialect.name == "sqlite" else pg_insert
        await self.db.execute(
            dialect_insert(GlobalFile)
            .values(
                hash_id=params.hash,
                file_type=params.file_type,
                size=params.size,
                url=params.url,
                file_metadata=params.metadata,
            )
            .on_conflict_do_nothing(index_elements=["hash_id"])
        )

        file_record = File(
            user_id=self.user_id,
            name=params.name,
            file_type=params.file_type,
            size=params.size,
            hash=params.hash,
            url=params.url,
            file_metadata=params.metadata,
        )
        self.db.add(file_record)
        await self.db.flush()
        if kb:
            self.db.add(KnowledgeBaseFile(knowledge_base_id=kb.id, file_id=file_record.id, user_id=self.user_id))
        await self.db.commit()
        await self.db.refresh(file_record)
        logger.info("创建文件记录 id=%s name=%s hash=%s", file_record.id, file_record.name, params.hash[:12])
        return file_record

    async def get_file(self, file_id: int) -> Optional[File]:
        """获取文件"""
        return await self.db.scalar(
            select(File).where(File.id == file_id, File.user_id == self.user_id)
        )

    async def get_file_item(self, file_id: int) -> Optional[FileItem]:
        """文件详情 + 任务状态快照；分块数在切分开始后才有值"""
        file = await self.get_file(file_id)
        if not file:
            return None
        item = FileItem.model_validate(file)
        if file.chunking_status is not None:
            item.chunk_count = await ChunkService(self.db, self.user_id).count_by_file(file.id)
        return item

    async def get_files(self, page: int = 1, page_size: int = 20) -> FileListResponse:
        """获取文件列表，附带各文件分块数"""
        offset = (page - 1) * page_size
        total = await self.db.scalar(
            select(func.count()).select_from(File).where(File.user_id == self.user_id)
        )
        result = await self.db.execute(
            select(File)
            .where(File.user_id == self.user_id)
            .order_by(File.created_at.desc(), File.id.desc())
            .offset(offset)
            .limit(page_size)
        )
        files = result.scalars().all()
        counts = await ChunkService(self.db, self.user_id).count_by_files([f.id for f in files])
        count_map = {c["id"]: c["count"] for c in counts}
        items = []
        for f in files:
            item = FileItem.model_validate(f)
            item.chunk_count = count_map.get(f.id, 0)
            items.append(item)
        return FileListResponse(files=items, total=total or 0, page=page, page_size=page_size)

    async def get_file_content(self, file: File) -> bytes:
        """读取文件原始字节"""
        data = await asyncio.to_thread(self.blob_store.get_bytes, file.url)
        if not data:
            raise ValueError(f"对象存储中文件为空 (path={file.url})")
        return data

    async def delete_file(self, file_id: int) -> None:
        """删除文件记录及其分块、向量、知识库关联。

        存储对象被多条记录共用，只有最后一条引用删除时才清理对象和全局文件记录。
        """
        file = await self.get_file(file_id)
        if not file:
            raise ValueError("文件不存在")

        await ChunkService(self.db, self.user_id).delete_by_file(file_id, commit=False)
        await self.db.execute(delete(KnowledgeBaseFile).where(KnowledgeBaseFile.file_id == file_id))
        await self.db.delete(file)
        await self.db.flush()

        remaining = 0
        if file.hash:
            remaining = await self.db.scalar(
                select(func.count()).select_from(File).where(File.hash == file.hash)
            )
        if not remaining:
            if file.hash:
                await self.db.execute(delete(GlobalFile).where(GlobalFile.hash_id == file.hash))
            await self.db.commit()
            try:
                await asyncio.to_thread(self.blob_store.remove, file.url)
            except Exception as e:
                logger.warning("删除对象 %s 失败: %s", file.url, e)
            return
        await self.db.commit()
